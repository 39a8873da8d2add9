"""
Remote backend over a boto3 DynamoDB client.

Every method is one low-level call. Remote errors (`ClientError`,
`BotoCoreError`) propagate unchanged and nothing is retried.
"""
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import boto3

from partiqldb.pagination import ResultPage

if TYPE_CHECKING:
    from partiqldb.options import ConnectionOptions

logger = logging.getLogger(__name__)

__all__ = ['DynamoDBBackend', 'create_client']


def create_client(options: 'ConnectionOptions') -> Any:
    """Build a low-level DynamoDB client from connection options.

    A client supplied on the options is returned as-is.
    """
    if options.client is not None:
        return options.client

    kwargs: dict[str, Any] = {
        'region_name': options.region,
        'aws_access_key_id': options.aws_access_key_id,
        'aws_secret_access_key': options.aws_secret_access_key,
    }
    if options.endpoint:
        kwargs['endpoint_url'] = options.endpoint
        kwargs['use_ssl'] = not options.endpoint.lower().startswith('http://')
    client = boto3.client('dynamodb', **kwargs)
    logger.debug(f'Created DynamoDB client for region {options.region} (endpoint: {options.endpoint or "default"})')
    return client


class DynamoDBBackend:
    """Statement execution and catalog calls against DynamoDB."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def execute_statement(self, statement: str, parameters: Sequence[dict] | None = None,
                          next_token: str | None = None) -> ResultPage:
        """Run one statement and return a single page of items."""
        request: dict[str, Any] = {'Statement': statement}
        if parameters:
            request['Parameters'] = list(parameters)
        if next_token:
            request['NextToken'] = next_token
        response = self.client.execute_statement(**request)
        return ResultPage(response.get('Items', []), next_token=response.get('NextToken'))

    def execute_batch(self, requests: Sequence[dict]) -> list[dict | None]:
        """Run statements atomically.

        Returns one item (or None) per request, in request order.
        """
        response = self.client.execute_transaction(TransactStatements=list(requests))
        responses = response.get('Responses') or []
        return [entry.get('Item') for entry in responses]

    def describe_table(self, name: str) -> dict[str, Any]:
        response = self.client.describe_table(TableName=name)
        return response.get('Table', {})

    def list_tables(self, next_token: str | None = None) -> ResultPage:
        """One page of table names, as records with a `TableName` field."""
        request: dict[str, Any] = {}
        if next_token:
            request['ExclusiveStartTableName'] = next_token
        response = self.client.list_tables(**request)
        records = [{'TableName': name} for name in response.get('TableNames', [])]
        return ResultPage(records, next_token=response.get('LastEvaluatedTableName'))

    def ping(self) -> None:
        self.client.describe_endpoints()
