"""
Client-side transactions over an atomic statement batch.

The backend only executes a transaction as one batch call, so statements
issued inside a transaction are staged and sent together on commit.

Each `TransactionSession` owns a worker thread. Callers hand it staged
statements through a queue and signal commit or rollback through one-shot
events; the worker alone holds the pending list. `commit()` blocks until the
worker acknowledges so results read right after it are settled.
`rollback()` only signals.

Examples
    with Transaction(cn) as tx:
        tx.execute('UPDATE "users" SET name = ? WHERE id = ?', 'Bob', '2')
        tx.execute('DELETE FROM "users" WHERE id = ?', '1')
"""
import logging
import queue
import threading
from enum import Enum, auto
from typing import Any

from partiqldb.exceptions import OperationalError, ProgrammingError
from partiqldb.exceptions import TransactionAlreadyActive
from partiqldb.pagination import ResultPage

logger = logging.getLogger(__name__)

__all__ = [
    'TransactionState',
    'StatementRequest',
    'TransactionSession',
    'TransactionCoordinator',
    'Transaction',
]

_WAKE = object()


class TransactionState(Enum):
    IDLE = auto()
    ACTIVE = auto()
    COMMITTING = auto()
    ROLLING_BACK = auto()
    CLOSED = auto()


OPEN_STATES = frozenset({TransactionState.ACTIVE, TransactionState.COMMITTING,
                         TransactionState.ROLLING_BACK})


class StatementRequest:
    """A staged statement and the slot its result is written to.

    The slot is filled only after the transaction resolves: `output` holds
    the returned record (if any), `error` the batch failure.
    """

    def __init__(self, statement: str, parameters: list[dict[str, Any]] | None = None) -> None:
        self.statement = statement
        self.parameters = parameters or []
        self.output: dict[str, Any] | None = None
        self.error: Exception | None = None
        self.executed = False
        self._done = threading.Event()

    def __repr__(self) -> str:
        return f'StatementRequest({self.statement!r}, params={len(self.parameters)}, done={self.done})'

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def to_parameterized(self) -> dict[str, Any]:
        """Request shape of one batch entry."""
        entry: dict[str, Any] = {'Statement': self.statement}
        if self.parameters:
            entry['Parameters'] = self.parameters
        return entry

    def resolve(self, output: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.output = output
        self.error = error
        self.executed = error is None
        self._done.set()

    def discard(self) -> None:
        self.executed = False
        self._done.set()

    def fetch(self, token: str | None = None, cancel: threading.Event | None = None) -> ResultPage:
        """Single page holding this request's record, if any."""
        if self.error is not None:
            raise self.error
        records = [self.output] if self.output else []
        return ResultPage(records, next_token=None)


class TransactionSession:
    """One open transaction and its worker."""

    def __init__(self, backend: Any, commit_timeout: float | None = None) -> None:
        self._backend = backend
        self._commit_timeout = commit_timeout
        self._state = TransactionState.IDLE
        self._state_lock = threading.Lock()
        self._queue: queue.Queue = queue.Queue()
        self._commit_requested = threading.Event()
        self._rollback_requested = threading.Event()
        self._acknowledged = threading.Event()
        self._worker: threading.Thread | None = None
        self.error: Exception | None = None

    def __repr__(self) -> str:
        return f'TransactionSession(state={self._state.name})'

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state in OPEN_STATES

    @property
    def is_active(self) -> bool:
        return self._state is TransactionState.ACTIVE

    def start(self) -> None:
        """Start the worker and accept statements. Does not block."""
        with self._state_lock:
            if self._state is not TransactionState.IDLE:
                raise TransactionAlreadyActive(f'session already started ({self._state.name})')
            self._worker = threading.Thread(target=self._run, name=f'partiqldb-tx-{id(self):x}',
                                            daemon=True)
            self._state = TransactionState.ACTIVE
        self._worker.start()
        logger.debug(f'Started transaction session {id(self):x}')

    def stage(self, request: StatementRequest) -> StatementRequest:
        """Queue a statement for the commit batch."""
        with self._state_lock:
            if self._state is not TransactionState.ACTIVE:
                raise ProgrammingError(f'cannot stage a statement in a {self._state.name} transaction')
            self._queue.put(request)
        logger.debug(f'Staged statement in transaction {id(self):x}: {request.statement}')
        return request

    def commit(self, quiet: bool = False) -> None:
        """Execute everything staged as one batch and wait for the worker.

        A commit already in progress is waited for. Without an active session
        this is a no-op that logs a warning unless `quiet`.
        """
        with self._state_lock:
            state = self._state
            if state is TransactionState.ACTIVE:
                self._state = TransactionState.COMMITTING
        if state is TransactionState.ACTIVE:
            self._signal(self._commit_requested)
        elif state is not TransactionState.COMMITTING:
            if not quiet:
                logger.warning('commit was performed, but transaction is not ongoing')
            return
        self.wait()

    def rollback(self) -> None:
        """Discard everything staged. Does not wait for the worker."""
        with self._state_lock:
            if self._state is not TransactionState.ACTIVE:
                logger.warning('rollback was performed, but transaction is not ongoing')
                return
            self._state = TransactionState.ROLLING_BACK
        self._signal(self._rollback_requested)

    def wait(self, timeout: float | None = None) -> None:
        """Block until the worker has finished."""
        timeout = self._commit_timeout if timeout is None else timeout
        if not self._acknowledged.wait(timeout):
            raise OperationalError(f'transaction worker did not finish within {timeout}s')

    def _signal(self, event: threading.Event) -> None:
        event.set()
        self._queue.put(_WAKE)

    def _drain(self, pending: list[StatementRequest]) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _WAKE:
                pending.append(item)

    def _run(self) -> None:
        pending: list[StatementRequest] = []
        try:
            while True:
                item = self._queue.get()
                if item is not _WAKE:
                    pending.append(item)
                    continue
                if self._rollback_requested.is_set():
                    self._drain(pending)
                    for request in pending:
                        request.discard()
                    logger.debug(f'Rolled back transaction {id(self):x}, discarded {len(pending)} statements')
                    return
                if self._commit_requested.is_set():
                    self._drain(pending)
                    self._execute(pending)
                    return
        finally:
            with self._state_lock:
                self._state = TransactionState.CLOSED
            self._acknowledged.set()

    def _execute(self, pending: list[StatementRequest]) -> None:
        if not pending:
            logger.debug(f'Committed empty transaction {id(self):x}')
            return

        logger.debug(f'Committing transaction {id(self):x} with {len(pending)} statements')
        try:
            outputs = list(self._backend.execute_batch([r.to_parameterized() for r in pending]))
        except Exception as exc:
            logger.error(f'Transaction batch of {len(pending)} statements failed: {exc}')
            self.error = exc
            for request in pending:
                request.resolve(error=exc)
            return

        outputs += [None] * (len(pending) - len(outputs))
        for request, output in zip(pending, outputs):
            request.resolve(output=output)


class TransactionCoordinator:
    """Holds the single transaction slot of a connection."""

    def __init__(self, backend: Any, commit_timeout: float | None = None) -> None:
        self._backend = backend
        self._commit_timeout = commit_timeout
        self._session: TransactionSession | None = None
        self._lock = threading.Lock()

    @property
    def session(self) -> TransactionSession | None:
        return self._session

    @property
    def active(self) -> bool:
        session = self._session
        return session is not None and session.is_active

    def begin(self) -> TransactionSession:
        """Open a new session.

        Raises
            TransactionAlreadyActive: a session is still open
        """
        with self._lock:
            if self._session is not None and self._session.is_open:
                raise TransactionAlreadyActive('a transaction is already active on this connection')
            session = TransactionSession(self._backend, self._commit_timeout)
            session.start()
            self._session = session
        return session

    def stage(self, request: StatementRequest) -> StatementRequest:
        session = self._session
        if session is None:
            raise ProgrammingError('no transaction is active')
        return session.stage(request)

    def commit(self) -> None:
        """Commit the current session, holding the slot until it finishes."""
        session = self._session
        if session is None:
            logger.warning('commit was performed, but transaction is not ongoing')
            return
        try:
            session.commit()
        finally:
            with self._lock:
                if self._session is session:
                    self._session = None

    def rollback(self) -> None:
        with self._lock:
            session, self._session = self._session, None
        if session is None:
            logger.warning('rollback was performed, but transaction is not ongoing')
            return
        session.rollback()


class Transaction:
    """Context manager for running several statements in one transaction.

    Commits on a clean exit and rolls back when the block raises. Nested
    transactions on one connection are not supported.

    Examples
        with Transaction(cn) as tx:
            tx.execute('INSERT INTO "users" VALUE {\\'id\\': ?, \\'name\\': ?}', '3', 'Alice')
            tx.execute('DELETE FROM "users" WHERE id = ?', '1')
    """

    def __init__(self, cn: Any) -> None:
        self.connection = cn

    def __enter__(self):
        self.connection.begin()
        logger.debug(f'Started transaction for connection {id(self.connection)}')
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        if exc_type is not None:
            self.connection.rollback()
            logger.warning('Rolling back the current transaction')
        else:
            self.connection.commit()
            logger.debug(f'Committed transaction for connection {id(self.connection)}')

    def execute(self, sql: str, *args: Any) -> Any:
        """Stage a mutation; the returned result settles on commit."""
        return self.connection.execute(sql, *args)

    def query(self, sql: str, *args: Any) -> Any:
        """Stage a read; iterating the returned cursor commits."""
        return self.connection.query(sql, *args)
