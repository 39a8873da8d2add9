"""
Connection handling over a DynamoDB backend.

This module provides:
1. The `connect()` function for creating new connections
2. The `Connection` class, the primary client, with query methods

The Connection provides methods like:
- execute(sql, *args) - Run a mutation and return a Result
- query(sql, *args) - Run a statement that returns rows, lazily paginated
- select(sql, *args) - Run a query and load every row with the data loader
- select_row(sql, *args) - Run a query expecting exactly 1 row
- begin() / commit() / rollback() - Client-side transactions
"""
import dataclasses
import functools
import logging
import threading
import time
import weakref
from functools import wraps
from typing import Any, Self

import pandas as pd
from partiqldb.backend import DynamoDBBackend, create_client
from partiqldb.binding import bind
from partiqldb.cursor import Cursor
from partiqldb.exceptions import ConnectionClosed, NotSupportedInTransaction
from partiqldb.exceptions import ProgrammingError
from partiqldb.meta import run_meta_query
from partiqldb.options import ConnectionOptions, use_iterdict_data_loader
from partiqldb.pagination import PageCursor, ResultPage
from partiqldb.pagination import TransactionPageCursor
from partiqldb.prepared import PreparedStatement
from partiqldb.result import Result, TransactionResult
from partiqldb.statement import ParsedStatement, StatementKind, classify
from partiqldb.transaction import StatementRequest, Transaction
from partiqldb.transaction import TransactionCoordinator, TransactionState

from libb import attrdict, load_options

__all__ = ['Connection', 'connect', 'dumpsql']

logger = logging.getLogger(__name__)


def dumpsql(func):
    """Decorator for logging statements, arguments and timing."""
    @wraps(func)
    def wrapper(self, operation: str, *args: Any):
        start = time.time()
        logger.debug(f'SQL:\n{operation}\nargs: {args}')
        try:
            return func(self, operation, *args)
        except Exception:
            logger.error(f'Error with statement:\nSQL:\n{operation}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            self.addcall(elapsed)
            logger.debug(f'Statement time: {elapsed:.4f}s')
    return wrapper


class Connection:
    """Runs statements against the backend and tracks calls and time.

    At most one transaction is open at a time. Cursors and query results
    handed out by the connection are closed with it.
    """

    def __init__(self, backend: Any, options: ConnectionOptions | None = None) -> None:
        self.backend = backend
        self.options = options or ConnectionOptions()
        self.calls = 0
        self.time = 0
        self._closed = False
        self._lock = threading.Lock()
        self._coordinator = TransactionCoordinator(backend, self.options.commit_timeout)
        self._resources: weakref.WeakSet = weakref.WeakSet()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'Connection(calls={self.calls}, closed={self._closed}, in_transaction={self.in_transaction})'

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_transaction(self) -> bool:
        return self._coordinator.active

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def cursor(self) -> Cursor:
        """Get a DB-API cursor for this connection
        """
        self._check_open()
        cursor = Cursor(self)
        self._resources.add(cursor)
        return cursor

    def ping(self) -> None:
        """Check the backend is reachable; remote errors propagate."""
        self._check_open()
        self.backend.ping()

    def close(self) -> None:
        """Close the connection, rolling back an open transaction. Idempotent.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        if self._coordinator.active:
            logger.warning('Connection closed with an active transaction, rolling back')
            self._coordinator.rollback()

        for resource in list(self._resources):
            resource.close()

        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')

    # transactions

    def begin(self) -> None:
        """Open a transaction.

        Raises
            TransactionAlreadyActive: a transaction is already open
        """
        self._check_open()
        self._coordinator.begin()
        logger.debug('Began transaction')

    def commit(self) -> None:
        """Run every staged statement as one atomic batch.

        Blocks until the batch has resolved. A failed batch is not raised
        here; each staged result raises it when read.
        """
        self._check_open()
        self._coordinator.commit()

    def rollback(self) -> None:
        """Discard every staged statement without waiting."""
        self._check_open()
        self._coordinator.rollback()

    def transaction(self) -> Transaction:
        return Transaction(self)

    # statements

    def prepare(self, sql: str) -> PreparedStatement:
        """Classify `sql` once for repeated execution."""
        self._check_open()
        return PreparedStatement(self, classify(sql))

    @dumpsql
    def execute(self, sql: str, *args: Any) -> Result:
        """Run a statement that does not return rows.

        Outside a transaction this runs immediately and reports one row
        affected. Inside one the statement is staged and the returned result
        settles on commit.
        """
        self._check_open()
        parsed = classify(sql)
        if parsed.is_meta:
            self._check_meta_allowed(parsed)
            raise ProgrammingError(f'meta-queries return rows, use query(): {sql!r}')
        if parsed.kind is StatementKind.SELECT:
            raise ProgrammingError(f'select statements return rows, use query(): {sql!r}')
        params = self._bind(parsed, args)
        self._check_committed_session()

        if self._coordinator.active:
            request = self._coordinator.stage(StatementRequest(parsed.rewritten_text, params))
            return TransactionResult(request)

        self.backend.execute_statement(parsed.rewritten_text, params)
        return Result(1)

    @dumpsql
    def query(self, sql: str, *args: Any) -> PageCursor:
        """Run a statement that returns rows.

        Rows are fetched one page at a time as the cursor is read. Inside a
        transaction the statement is staged, and reading the cursor commits
        the transaction.
        """
        self._check_open()
        parsed = classify(sql)
        params = self._bind(parsed, args)

        if parsed.is_meta:
            self._check_meta_allowed(parsed)
            cursor = run_meta_query(self.backend, parsed, args)
        elif self._coordinator.active:
            cursor = self._stage_query(parsed, params)
        else:
            self._check_committed_session()
            cursor = self._run_query(parsed, params)

        self._resources.add(cursor)
        return cursor

    def _run_query(self, parsed: ParsedStatement, params: list[dict]) -> PageCursor:
        statement = parsed.rewritten_text

        def fetch(token, cancel):
            if cancel.is_set():
                return ResultPage([], next_token=None)
            return self.backend.execute_statement(statement, params, next_token=token)

        first_page = self.backend.execute_statement(statement, params)
        return PageCursor(parsed.selected_columns, first_page, fetch)

    def _stage_query(self, parsed: ParsedStatement, params: list[dict]) -> TransactionPageCursor:
        session = self._coordinator.session
        request = self._coordinator.stage(StatementRequest(parsed.rewritten_text, params))
        return TransactionPageCursor(parsed.selected_columns, request.fetch,
                                     commit=functools.partial(session.commit, quiet=True))

    def _bind(self, parsed: ParsedStatement, args: tuple) -> list[dict]:
        if len(args) != parsed.placeholder_count:
            raise ProgrammingError(f'statement takes {parsed.placeholder_count} arguments, got {len(args)}')
        if parsed.is_meta:
            return []
        return bind(args)

    def _check_meta_allowed(self, parsed: ParsedStatement) -> None:
        if self._coordinator.active:
            raise NotSupportedInTransaction(f'{parsed.kind.name.lower()} is not supported within a transaction')

    def _check_committed_session(self) -> None:
        session = self._coordinator.session
        if session is not None and session.state is TransactionState.CLOSED:
            logger.warning('Transaction was already committed by reading a staged query, '
                           'statement runs outside of it')

    def _check_open(self) -> None:
        if self._closed:
            raise ConnectionClosed('connection is closed')

    # loading helpers

    def select(self, sql: str, *args: Any, **kwargs: Any) -> list[dict[str, Any]] | pd.DataFrame:
        """Run a query and load every row with the configured data loader.
        """
        cursor = self.query(sql, *args)
        try:
            data = list(cursor.records())
        finally:
            cursor.close()
        columns = cursor.columns or tuple(sorted({name for row in data for name in row}))
        result = self.options.data_loader(data, columns, **kwargs)
        logger.debug(f'Select query returned {len(data)} rows')
        return result

    @use_iterdict_data_loader
    def select_column(self, sql: str, *args: Any) -> list[Any]:
        """Run a query and return its first column as a list.
        """
        data = self.select(sql, *args)
        return [next(iter(row.values()), None) for row in data]

    @use_iterdict_data_loader
    def select_row(self, sql: str, *args: Any) -> attrdict:
        """Run a query and return a single row as an attribute dictionary.

        Raises AssertionError if the query returns zero or multiple rows.
        """
        data = self.select(sql, *args)
        assert len(data) == 1, f'Expected one row, got {len(data)}'
        return attrdict(data[0])

    @use_iterdict_data_loader
    def select_row_or_none(self, sql: str, *args: Any) -> attrdict | None:
        """Run a query and return a single row or None if no rows found.
        """
        data = self.select(sql, *args)
        if len(data) == 1:
            return attrdict(data[0])
        return None

    @use_iterdict_data_loader
    def select_scalar(self, sql: str, *args: Any) -> Any:
        """Run a query and return the first value of its single row.

        Raises AssertionError if the query returns zero or multiple rows.
        """
        data = self.select(sql, *args)
        assert len(data) == 1, f'Expected one row, got {len(data)}'
        return next(iter(data[0].values()), None)

    def select_scalar_or_none(self, sql: str, *args: Any) -> Any | None:
        """Run a query and return a single scalar value or None if no rows found.
        """
        try:
            return self.select_scalar(sql, *args)
        except AssertionError:
            return None


def connect(options: ConnectionOptions | dict[str, Any] | str | None = None,
            config: Any | None = None, **kw: Any) -> Connection:
    """Connect to DynamoDB.

    Args:
        options: Can be:
                - ConnectionOptions object
                - Connection string, `AWS_REGION=...;ENDPOINT=...`
                - String path to configuration
                - Dictionary of options
                - None, with options as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        Connection object
    """
    if isinstance(options, ConnectionOptions):
        if kw:
            options = dataclasses.replace(options, **kw)
    elif isinstance(options, str) and '=' in options:
        options = ConnectionOptions.from_dsn(options, **kw)
    elif options is None:
        options = ConnectionOptions(**kw)
    else:
        options_func = load_options(cls=ConnectionOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    return Connection(DynamoDBBackend(create_client(options)), options)
