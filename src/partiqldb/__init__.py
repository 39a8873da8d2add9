"""
DB-API driver for DynamoDB's PartiQL dialect.

All query operations can be called either as:
- Module functions: db.select(cn, sql, *args)
- Connection methods: cn.select(sql, *args)

The module functions are facades over the Connection methods.
"""
__version__ = '0.1.0'

from typing import Any

from partiqldb.connection import Connection, connect
from partiqldb.exceptions import BindingError, ConnectionClosed, DatabaseError
from partiqldb.exceptions import DataError, Error, IntegrityError
from partiqldb.exceptions import InterfaceError, InternalError
from partiqldb.exceptions import InvalidStatement, NotSupportedError
from partiqldb.exceptions import NotSupportedInTransaction, OperationalError
from partiqldb.exceptions import ProgrammingError, RemoteError
from partiqldb.exceptions import StatementClosed, TransactionAlreadyActive
from partiqldb.exceptions import Warning  # noqa: A004
from partiqldb.options import ConnectionOptions, parse_dsn
from partiqldb.pagination import PageCursor
from partiqldb.result import Result
from partiqldb.statement import DESCRIBE_TABLE, LIST_TABLES, ParsedStatement
from partiqldb.statement import StatementKind, classify
from partiqldb.transaction import Transaction as transaction
from partiqldb.types import AttributeValue

apilevel = '2.0'
threadsafety = 1
paramstyle = 'qmark'


def execute(cn: Connection, sql: str, *args: Any) -> Result:
    """Run a statement that does not return rows.
    """
    return cn.execute(sql, *args)


delete = execute
insert = execute
update = execute


def query(cn: Connection, sql: str, *args: Any) -> PageCursor:
    """Run a statement that returns rows, paginated lazily.
    """
    return cn.query(sql, *args)


def select(cn: Connection, sql: str, *args: Any, **kwargs: Any) -> Any:
    """Run a query and load every row with the connection's data loader.
    """
    return cn.select(sql, *args, **kwargs)


def select_column(cn: Connection, sql: str, *args: Any) -> list[Any]:
    """Run a query and return a single column as a list.
    """
    return cn.select_column(sql, *args)


def select_row(cn: Connection, sql: str, *args: Any) -> Any:
    """Run a query and return a single row.

    Raises AssertionError if the query returns zero or multiple rows.
    """
    return cn.select_row(sql, *args)


def select_row_or_none(cn: Connection, sql: str, *args: Any) -> Any | None:
    """Run a query and return a single row or None if no rows found.
    """
    return cn.select_row_or_none(sql, *args)


def select_scalar(cn: Connection, sql: str, *args: Any) -> Any:
    """Run a query and return a single scalar value.

    Raises AssertionError if the query returns zero or multiple rows.
    """
    return cn.select_scalar(sql, *args)


def select_scalar_or_none(cn: Connection, sql: str, *args: Any) -> Any | None:
    """Run a query and return a single scalar value or None if no rows found.
    """
    return cn.select_scalar_or_none(sql, *args)


def describe_table(cn: Connection, table: str) -> Any:
    """Return a table's descriptor as a single row.
    """
    return cn.select_row(f'SELECT * FROM "{DESCRIBE_TABLE}" WHERE table_name = ?', table)


def list_tables(cn: Connection) -> list[str]:
    """Return the names of all tables.
    """
    return cn.select_column(f'SELECT * FROM "{LIST_TABLES}"')


__all__ = [
    'apilevel',
    'threadsafety',
    'paramstyle',
    'connect',
    'Connection',
    'ConnectionOptions',
    'parse_dsn',
    'transaction',
    'execute',
    'delete',
    'insert',
    'update',
    'query',
    'select',
    'select_column',
    'select_row',
    'select_row_or_none',
    'select_scalar',
    'select_scalar_or_none',
    'describe_table',
    'list_tables',
    'classify',
    'ParsedStatement',
    'StatementKind',
    'AttributeValue',
    'Result',
    'Error',
    'Warning',
    'InterfaceError',
    'DatabaseError',
    'DataError',
    'OperationalError',
    'IntegrityError',
    'InternalError',
    'ProgrammingError',
    'NotSupportedError',
    'InvalidStatement',
    'BindingError',
    'TransactionAlreadyActive',
    'NotSupportedInTransaction',
    'ConnectionClosed',
    'StatementClosed',
    'RemoteError',
]
