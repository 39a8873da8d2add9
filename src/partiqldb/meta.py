"""
Pseudo-tables answered by catalog calls instead of statements.

    SELECT * FROM "!pqxd_describe_table" WHERE table_name = 'users'
    SELECT * FROM "!pqxd_list_tables"

Describe-table yields one row of table descriptor fields; list-tables
yields one `TableName` row per table and paginates like a query.
"""
import logging
import threading
from collections.abc import Sequence
from typing import Any

from partiqldb.exceptions import ProgrammingError
from partiqldb.pagination import PageCursor, ResultPage, identity
from partiqldb.statement import ParsedStatement, StatementKind

logger = logging.getLogger(__name__)

__all__ = ['DESCRIBE_TABLE_COLUMNS', 'describe_table', 'list_tables', 'run_meta_query']

DESCRIBE_TABLE_COLUMNS = (
    'ArchivalSummary',
    'AttributeDefinitions',
    'BillingModeSummary',
    'CreationDateTime',
    'DeletionProtectionEnabled',
    'KeySchema',
    'GlobalSecondaryIndexes',
    'GlobalTableVersion',
    'ItemCount',
    'LocalSecondaryIndexes',
    'OnDemandThroughput',
    'ProvisionedThroughput',
    'Replicas',
    'RestoreSummary',
    'SSEDescription',
    'StreamSpecification',
    'TableClassSummary',
    'TableStatus',
)


def _no_more_pages(token: str | None, cancel: threading.Event) -> ResultPage:
    return ResultPage([], next_token=None)


def describe_table(backend: Any, parsed: ParsedStatement, args: Sequence[Any] = ()) -> PageCursor:
    """One-row cursor over a table's descriptor.

    The `?` target form takes the table name from the first argument.
    """
    table_name = parsed.table_name
    if table_name is None:
        if not args or not isinstance(args[0], str):
            raise ProgrammingError('describe-table needs the table name as its first argument')
        table_name = args[0]

    description = backend.describe_table(table_name)
    logger.debug(f'Described table {table_name}')
    columns = parsed.selected_columns or DESCRIBE_TABLE_COLUMNS
    return PageCursor(columns, ResultPage([description]), _no_more_pages, decode=identity)


def list_tables(backend: Any, parsed: ParsedStatement) -> PageCursor:
    """Paginated cursor over table names."""
    def fetch(token, cancel):
        if cancel.is_set():
            return ResultPage([], next_token=None)
        return backend.list_tables(token)

    return PageCursor(parsed.selected_columns or ('TableName',), backend.list_tables(), fetch,
                      decode=identity)


def run_meta_query(backend: Any, parsed: ParsedStatement, args: Sequence[Any] = ()) -> PageCursor:
    if parsed.kind is StatementKind.DESCRIBE_TABLE:
        return describe_table(backend, parsed, args)
    if parsed.kind is StatementKind.LIST_TABLES:
        return list_tables(backend, parsed)
    raise ProgrammingError(f'not a meta-query: {parsed.text!r}')
