"""
Statements classified once and run many times.
"""
import logging
from typing import TYPE_CHECKING, Any

from partiqldb.exceptions import ConnectionClosed, StatementClosed
from partiqldb.pagination import PageCursor
from partiqldb.result import Result
from partiqldb.statement import ParsedStatement

if TYPE_CHECKING:
    from partiqldb.connection import Connection

logger = logging.getLogger(__name__)

__all__ = ['PreparedStatement']


class PreparedStatement:
    """A classified statement bound to its connection.

    Examples
        stmt = cn.prepare('SELECT id, name FROM "users" WHERE id = ?')
        for user_id in ('1', '2'):
            rows = list(stmt.query(user_id))
        stmt.close()
    """

    def __init__(self, connection: 'Connection', parsed: ParsedStatement) -> None:
        self.connection = connection
        self.parsed = parsed
        self._closed = False

    def __repr__(self) -> str:
        return f'PreparedStatement({self.parsed.text!r}, closed={self._closed})'

    def __enter__(self) -> 'PreparedStatement':
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: Any | None) -> None:
        if not self._closed:
            self.close()

    @property
    def num_input(self) -> int:
        """Number of `?` parameters the statement takes."""
        return self.parsed.placeholder_count

    @property
    def closed(self) -> bool:
        return self._closed

    def execute(self, *args: Any) -> Result:
        self._check_usable()
        return self.connection.execute(self.parsed.text, *args)

    def query(self, *args: Any) -> PageCursor:
        self._check_usable()
        return self.connection.query(self.parsed.text, *args)

    def close(self) -> None:
        """Close the statement.

        Raises
            StatementClosed: the statement was already closed
        """
        if self._closed:
            raise StatementClosed('statement is already closed')
        self._closed = True
        logger.debug(f'Closed prepared statement {self.parsed.text!r}')

    def _check_usable(self) -> None:
        if self._closed:
            raise StatementClosed('statement is closed')
        if self.connection.closed:
            raise ConnectionClosed('connection is closed')
