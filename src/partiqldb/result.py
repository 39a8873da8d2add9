"""
Results of statements that do not return rows.
"""
from typing import TYPE_CHECKING

from partiqldb.exceptions import NotSupportedError

if TYPE_CHECKING:
    from partiqldb.transaction import StatementRequest


class Result:
    """Outcome of an immediately executed mutation."""

    def __init__(self, rows_affected: int) -> None:
        self._rows_affected = rows_affected

    def __repr__(self) -> str:
        return f'{type(self).__name__}(rows_affected={self.rows_affected})'

    @property
    def rows_affected(self) -> int:
        return self._rows_affected

    @property
    def last_insert_id(self) -> int:
        raise NotSupportedError('last insert id is not supported')


class TransactionResult(Result):
    """Outcome of a mutation staged in a transaction.

    `rows_affected` is 0 until the transaction commits, 1 once it has
    committed, and raises the batch error if the commit failed.
    """

    def __init__(self, request: 'StatementRequest') -> None:
        super().__init__(0)
        self._request = request

    def __repr__(self) -> str:
        return f'{type(self).__name__}(done={self._request.done}, failed={self._request.error is not None})'

    @property
    def rows_affected(self) -> int:
        if not self._request.done:
            return 0
        if self._request.error is not None:
            raise self._request.error
        return 1 if self._request.executed else 0
