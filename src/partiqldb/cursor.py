"""
DB-API 2.0 cursor (PEP-249) over the connection's paginated results.
"""
import logging
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Any

from partiqldb.exceptions import ConnectionClosed, InterfaceError
from partiqldb.pagination import PageCursor
from partiqldb.result import Result
from partiqldb.statement import classify

if TYPE_CHECKING:
    from partiqldb.connection import Connection

logger = logging.getLogger(__name__)

__all__ = ['Cursor']


class Cursor:
    """PEP-249 cursor.

    Statements that return rows are read lazily one page at a time; other
    statements expose their affected row count through `rowcount`, which
    inside a transaction stays 0 until commit.
    """

    lastrowid = None

    def __init__(self, connection: 'Connection') -> None:
        self.connection = connection
        self.arraysize: int = 1
        self._rows: PageCursor | None = None
        self._results: list[Result] = []
        self._closed = False

    def __iter__(self) -> Iterator[tuple]:
        while (row := self.fetchone()) is not None:
            yield row

    def __enter__(self) -> 'Cursor':
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: Any | None) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def description(self) -> list[tuple] | None:
        """Column descriptions for last query.

        For `SELECT *` the names come from the first record, which may fetch
        the first page (and commit, inside a transaction).
        """
        if self._rows is None:
            return None
        columns = self._rows.columns or self._peek_columns()
        if not columns:
            return None
        return [(name, None, None, None, None, None, None) for name in columns]

    @property
    def rowcount(self) -> int:
        """Rows affected by the last mutation, -1 after a query."""
        if self._rows is not None or not self._results:
            return -1
        return sum(result.rows_affected for result in self._results)

    def execute(self, operation: str, parameters: Sequence[Any] = ()) -> 'Cursor':
        """Run a statement with positional `?` parameters."""
        self._check_open()
        self._reset()
        if classify(operation).returns_rows:
            self._rows = self.connection.query(operation, *parameters)
        else:
            self._results.append(self.connection.execute(operation, *parameters))
        return self

    def executemany(self, operation: str, seq_of_parameters: Sequence[Sequence[Any]]) -> 'Cursor':
        """Run a mutation once per parameter sequence."""
        self._check_open()
        self._reset()
        results = [self.connection.execute(operation, *parameters) for parameters in seq_of_parameters]
        self._results = results
        logger.debug(f'Executemany ran {len(results)} statements')
        return self

    def fetchone(self) -> tuple | None:
        """Fetch next row."""
        self._check_open()
        if self._rows is None:
            return None
        dest: list[Any] = []
        while not self._rows.next(dest):
            if not self._rows.advance_page():
                return None
        return tuple(dest)

    def fetchmany(self, size: int | None = None) -> list[tuple]:
        """Fetch next set of rows."""
        if size is None:
            size = self.arraysize
        rows = []
        while len(rows) < size and (row := self.fetchone()) is not None:
            rows.append(row)
        return rows

    def fetchall(self) -> list[tuple]:
        """Fetch all remaining rows."""
        return list(self)

    def close(self) -> None:
        """Close cursor and release its result. Idempotent."""
        if self._closed:
            return
        self._reset()
        self._closed = True

    def setinputsizes(self, sizes: Sequence) -> None:
        """Predefine memory areas for parameters."""

    def setoutputsize(self, size: int, column: int | None = None) -> None:
        """Set column buffer size for large columns."""

    def nextset(self) -> None:
        """Multiple result sets are not supported."""
        return None

    def _check_open(self) -> None:
        if self._closed:
            raise InterfaceError('cursor is closed')
        if self.connection.closed:
            raise ConnectionClosed('connection is closed')

    def _reset(self) -> None:
        if self._rows is not None:
            self._rows.close()
        self._rows = None
        self._results = []

    def _peek_columns(self) -> tuple[str, ...]:
        rows = self._rows
        while rows.advance_page():
            if rows.position < len(rows.page):
                return rows.column_names()
        return ()
