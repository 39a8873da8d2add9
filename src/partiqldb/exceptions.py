"""
Driver exception classes.

Follows the Python DB-API 2.0 (PEP-249) hierarchy. Remote service errors
raised by botocore are never wrapped; they are forwarded verbatim and can be
caught through the `RemoteError` group.
"""
from botocore.exceptions import BotoCoreError, ClientError


class Error(Exception):
    """Base class for all driver errors.
    """


class Warning(Exception):  # noqa: A001
    """Important warnings (PEP-249).
    """


class InterfaceError(Error):
    """Error related to the driver interface rather than the database.
    """


class DatabaseError(Error):
    """Error related to the database.
    """


class ProgrammingError(DatabaseError):
    """Error in statement shape, argument count or API usage.
    """


class DataError(DatabaseError):
    """Error in the data being processed.
    """


class OperationalError(DatabaseError):
    """Error in the operation of the database.
    """


class IntegrityError(DatabaseError):
    """Relational integrity error (PEP-249, never raised by this driver).
    """


class InternalError(DatabaseError):
    """Internal driver error.
    """


class NotSupportedError(DatabaseError):
    """Operation not supported by the driver.
    """


class InvalidStatement(ProgrammingError):
    """Statement text matches none of the accepted shapes.
    """

    def __init__(self, statement: str, reason: str | None = None) -> None:
        self.statement = statement
        message = reason or 'statement does not match any supported shape'
        super().__init__(f'{message}: {statement!r}')


class BindingError(DataError):
    """Failure converting a positional argument to a statement parameter.
    """

    def __init__(self, position: int, value: object, cause: Exception | None = None) -> None:
        self.position = position
        self.value = value
        self.cause = cause
        detail = f': {cause}' if cause is not None else ''
        super().__init__(
            f'cannot bind argument {position} of type {type(value).__name__}{detail}')


class TransactionAlreadyActive(ProgrammingError):
    """A transaction is already open on this connection.
    """


class NotSupportedInTransaction(ProgrammingError, NotSupportedError):
    """Operation cannot be performed inside a transaction.
    """


class ConnectionClosed(InterfaceError):
    """Operation attempted on a closed connection.
    """


class StatementClosed(InterfaceError):
    """Operation attempted on a closed prepared statement.
    """


RemoteError = (
    ClientError,       # service-side rejection (validation, conditional check, throttling)
    BotoCoreError,     # transport, credentials, endpoint resolution
)
