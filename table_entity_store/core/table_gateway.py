"""
DynamoDB Table Service

This module implements the TableService contract over boto3 DynamoDB.
Every table uses the same key schema:

- PartitionKey (HASH, string)
- RowKey (RANGE, string)

and every row carries two system attributes written on each merge:

- ETag: opaque version tag, a fresh UUID per write (shared by every row of
  one transaction)
- Timestamp: ISO-8601 UTC write time

boto3 is synchronous, so each request runs in a worker thread via
``asyncio.to_thread``; cancelling the awaiting task abandons the wait.

Query planning:
- A filter that selects exact (PartitionKey, RowKey) pairs uses BatchGetItem
- A filter pinning ``PartitionKey eq`` uses Query with a key condition
- Anything else falls back to a paginated Scan with a FilterExpression
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import boto3
from boto3.dynamodb.types import TypeSerializer
from botocore.config import Config
from botocore.exceptions import ClientError

from ..config import StoreConfig
from ..exceptions import (
    ConflictError,
    ConnectionError,
    ItemNotFoundError,
    RetryableError,
    ValidationError,
)
from .filters import exact_keys, parse_filter, split_key_condition
from .table_service import (
    ETAG,
    PARTITION_KEY,
    ROW_KEY,
    TIMESTAMP,
    TableRecord,
    TableService,
    UpsertMergeAction,
    ensure_single_partition,
)

logger = logging.getLogger(__name__)

BATCH_GET_LIMIT = 100


def map_dynamodb_error(
    error: ClientError,
    operation: str,
    table_name: str,
    resource_id: Optional[str] = None
) -> Exception:
    """Map DynamoDB ClientError to domain-specific exceptions.

    Args:
        error: The boto3 ClientError
        operation: The operation that failed (e.g., "GetItem", "TransactWriteItems")
        table_name: The DynamoDB table name
        resource_id: Optional resource identifier for context

    Returns:
        Appropriate domain exception carrying the provider error code
    """
    error_code = error.response['Error']['Code']
    error_message = error.response['Error'].get('Message', '')

    context = f"{operation} on {table_name}"
    if resource_id:
        context += f" (resource: {resource_id})"

    full_message = f"{context}: {error_message}"

    if error_code == 'ConditionalCheckFailedException':
        return ConflictError(f"Conditional check failed - {full_message}", resource_id, original_error=error, error_code=error_code)

    elif error_code in ['TransactionConflictException', 'TransactionCanceledException', 'DuplicateTransactionException']:
        return ConflictError(f"Transaction conflict - {full_message}", resource_id, original_error=error, error_code=error_code)

    elif error_code == 'ResourceNotFoundException':
        if resource_id:
            return ItemNotFoundError(table_name, {'resource_id': resource_id}, original_error=error)
        return ConnectionError(f"Table not found - {full_message}", original_error=error, error_code=error_code)

    elif error_code == 'ResourceInUseException':
        return ConflictError(f"Resource in use - {full_message}", resource_id, original_error=error, error_code=error_code)

    elif error_code in ['ValidationException', 'ItemCollectionSizeLimitExceededException', 'LimitExceededException']:
        return ValidationError(f"Validation failed - {full_message}", original_error=error, error_code=error_code)

    elif error_code in [
        'ProvisionedThroughputExceededException', 'RequestLimitExceeded', 'ThrottlingException',
        'TransactionInProgressException', 'RequestTimeoutException'
    ]:
        return RetryableError(f"Throttling - {full_message}", original_error=error, error_code=error_code)

    elif error_code in ['InternalServerError', 'ServiceUnavailable', 'ServiceUnavailableException', 'InternalFailure']:
        return RetryableError(f"Service unavailable - {full_message}", original_error=error, error_code=error_code)

    elif error_code in [
        'UnrecognizedClientException', 'AccessDeniedException', 'ExpiredTokenException',
        'InvalidSignatureException', 'IncompleteSignatureException'
    ]:
        return ConnectionError(f"Authentication/authorization failed - {full_message}", original_error=error, error_code=error_code)

    # Default to ConnectionError for unknown errors
    logger.warning(f"Unknown DynamoDB error code '{error_code}' mapped to ConnectionError")
    return ConnectionError(f"DynamoDB operation failed - {full_message}", original_error=error, error_code=error_code)


def _to_dynamodb(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamodb(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamodb(v) for v in value]
    return value


def _from_dynamodb(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamodb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamodb(v) for v in value]
    if isinstance(value, set):
        return {_from_dynamodb(v) for v in value}
    return value


def item_to_record(item: Dict[str, Any]) -> TableRecord:
    """Convert a deserialized DynamoDB item into a TableRecord."""
    fields = dict(item)
    partition_key = fields.pop(PARTITION_KEY)
    row_key = fields.pop(ROW_KEY)
    etag = fields.pop(ETAG, None)
    timestamp = fields.pop(TIMESTAMP, None)
    if timestamp is not None:
        timestamp = datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
    return TableRecord(
        partition_key=partition_key,
        row_key=row_key,
        etag=etag,
        timestamp=timestamp,
        fields=_from_dynamodb(fields)
    )


def build_update(action: UpsertMergeAction, etag: str, timestamp: datetime) -> Dict[str, Any]:
    """Build UpdateItem parameters that merge ``action.fields`` into the row.

    Attribute names go through ExpressionAttributeNames so reserved words are safe.
    """
    names = {'#etag': ETAG, '#ts': TIMESTAMP}
    values = {':etag': etag, ':ts': timestamp.isoformat()}
    assignments = ['#etag = :etag', '#ts = :ts']

    for i, (name, value) in enumerate(action.fields.items()):
        names[f'#f{i}'] = name
        values[f':v{i}'] = _to_dynamodb(value)
        assignments.append(f'#f{i} = :v{i}')

    params = {
        'Key': {PARTITION_KEY: action.partition_key, ROW_KEY: action.row_key},
        'UpdateExpression': 'SET ' + ', '.join(assignments),
        'ExpressionAttributeNames': names,
        'ExpressionAttributeValues': values,
    }

    if action.check_etag:
        if action.if_match is None:
            names['#pk'] = PARTITION_KEY
            params['ConditionExpression'] = 'attribute_not_exists(#pk)'
        else:
            values[':expected'] = action.if_match
            params['ConditionExpression'] = '#etag = :expected'

    return params


class DynamoDBTableService(TableService):
    """
    TableService backed by Amazon DynamoDB.

    One instance serves every table of a store; boto3 resources are created
    lazily on first use and reused afterwards.
    """

    def __init__(self, config: StoreConfig):
        """Initialize the service.

        Args:
            config: Store configuration (credentials, endpoint, tuning)
        """
        self.config = config
        self._dynamodb = None
        self._tables: Dict[str, Any] = {}
        self._serializer = TypeSerializer()

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource."""
        if self._dynamodb is None:
            try:
                session = boto3.Session(
                    aws_access_key_id=self.config.aws_access_key_id,
                    aws_secret_access_key=self.config.aws_secret_access_key,
                    region_name=self.config.region_name
                )

                dynamodb_config = {
                    'region_name': self.config.region_name
                }

                if self.config.endpoint_url:
                    dynamodb_config['endpoint_url'] = self.config.endpoint_url

                boto_config = Config(
                    retries={'max_attempts': self.config.retries},
                    max_pool_connections=self.config.max_pool_connections,
                    read_timeout=self.config.timeout_seconds,
                    connect_timeout=self.config.timeout_seconds
                )
                dynamodb_config['config'] = boto_config

                self._dynamodb = session.resource('dynamodb', **dynamodb_config)
            except Exception as e:
                logger.error(f"Failed to create DynamoDB resource: {e}")
                raise ConnectionError(f"Failed to connect to DynamoDB: {e}", e) from e
        return self._dynamodb

    @property
    def client(self):
        return self.dynamodb.meta.client

    def table(self, table_name: str):
        """Get (and cache) the boto3 Table resource for a table name."""
        if table_name not in self._tables:
            self._tables[table_name] = self.dynamodb.Table(table_name)
        return self._tables[table_name]

    async def table_exists(self, table_name: str) -> bool:
        try:
            await asyncio.to_thread(self.client.describe_table, TableName=table_name)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] == 'ResourceNotFoundException':
                return False
            raise map_dynamodb_error(e, "DescribeTable", table_name) from e

    async def create_table_if_not_exists(self, table_name: str) -> None:
        if await self.table_exists(table_name):
            return

        try:
            await asyncio.to_thread(
                self.client.create_table,
                TableName=table_name,
                KeySchema=[
                    {'AttributeName': PARTITION_KEY, 'KeyType': 'HASH'},
                    {'AttributeName': ROW_KEY, 'KeyType': 'RANGE'}
                ],
                AttributeDefinitions=[
                    {'AttributeName': PARTITION_KEY, 'AttributeType': 'S'},
                    {'AttributeName': ROW_KEY, 'AttributeType': 'S'}
                ],
                BillingMode='PAY_PER_REQUEST'
            )
            logger.info(f"Created table {table_name}")
        except ClientError as e:
            # Another process created it first
            if e.response['Error']['Code'] != 'ResourceInUseException':
                raise map_dynamodb_error(e, "CreateTable", table_name) from e

        waiter = self.client.get_waiter('table_exists')
        await asyncio.to_thread(waiter.wait, TableName=table_name)

    async def get_entity(self, table_name: str, partition_key: str, row_key: str) -> Optional[TableRecord]:
        try:
            response = await asyncio.to_thread(
                self.table(table_name).get_item,
                Key={PARTITION_KEY: partition_key, ROW_KEY: row_key},
                ConsistentRead=True
            )
        except ClientError as e:
            raise map_dynamodb_error(e, "GetItem", table_name) from e

        if 'Item' not in response:
            return None
        return item_to_record(response['Item'])

    async def upsert_merge(self, table_name: str, action: UpsertMergeAction) -> str:
        etag = uuid.uuid4().hex
        params = build_update(action, etag, datetime.now(timezone.utc))
        try:
            await asyncio.to_thread(self.table(table_name).update_item, **params)
        except ClientError as e:
            raise map_dynamodb_error(e, "UpdateItem", table_name, action.row_key) from e

        logger.info(f"Merged item into {table_name}: {action.key}")
        return etag

    async def submit_transaction(self, table_name: str, actions: List[UpsertMergeAction]) -> List[str]:
        if not actions:
            return []
        ensure_single_partition(actions)

        etag = uuid.uuid4().hex
        timestamp = datetime.now(timezone.utc)
        transact_items = []
        for action in actions:
            params = build_update(action, etag, timestamp)
            update = {
                'TableName': table_name,
                'Key': {k: self._serializer.serialize(v) for k, v in params['Key'].items()},
                'UpdateExpression': params['UpdateExpression'],
                'ExpressionAttributeNames': params['ExpressionAttributeNames'],
                'ExpressionAttributeValues': {
                    k: self._serializer.serialize(v) for k, v in params['ExpressionAttributeValues'].items()
                },
            }
            if 'ConditionExpression' in params:
                update['ConditionExpression'] = params['ConditionExpression']
            transact_items.append({'Update': update})

        try:
            await asyncio.to_thread(self.client.transact_write_items, TransactItems=transact_items)
        except ClientError as e:
            raise map_dynamodb_error(e, "TransactWriteItems", table_name) from e

        logger.info(f"Transaction of {len(actions)} action(s) completed on {table_name}")
        return [etag] * len(actions)

    async def delete_entity(self, table_name: str, partition_key: str, row_key: str) -> None:
        try:
            await asyncio.to_thread(
                self.table(table_name).delete_item,
                Key={PARTITION_KEY: partition_key, ROW_KEY: row_key}
            )
        except ClientError as e:
            raise map_dynamodb_error(e, "DeleteItem", table_name, row_key) from e

        logger.info(f"Deleted item from {table_name}: {(partition_key, row_key)}")

    async def query(self, table_name: str, filter_expression: Optional[str] = None) -> AsyncIterator[TableRecord]:
        node = parse_filter(filter_expression) if filter_expression else None

        if node is not None:
            keys = exact_keys(node)
            if keys is not None:
                async for record in self._batch_get(table_name, keys):
                    yield record
                return

            plan = split_key_condition(node)
            if plan is not None:
                key_condition, remaining = plan
                kwargs = {'KeyConditionExpression': key_condition, 'ConsistentRead': True}
                if remaining is not None:
                    kwargs['FilterExpression'] = remaining
                async for record in self._paginate(table_name, "Query", kwargs):
                    yield record
                return

        kwargs = {'ConsistentRead': True}
        if node is not None:
            kwargs['FilterExpression'] = node.to_condition()
        async for record in self._paginate(table_name, "Scan", kwargs):
            yield record

    async def _paginate(self, table_name: str, operation: str, kwargs: Dict[str, Any]) -> AsyncIterator[TableRecord]:
        table = self.table(table_name)
        call = table.query if operation == "Query" else table.scan
        while True:
            try:
                response = await asyncio.to_thread(call, **kwargs)
            except ClientError as e:
                raise map_dynamodb_error(e, operation, table_name) from e

            for item in response.get('Items', []):
                yield item_to_record(item)

            if 'LastEvaluatedKey' not in response:
                break
            kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

    async def _batch_get(self, table_name: str, keys: List[Tuple[str, str]]) -> AsyncIterator[TableRecord]:
        unique_keys = list(dict.fromkeys(keys))
        for start in range(0, len(unique_keys), BATCH_GET_LIMIT):
            chunk = unique_keys[start:start + BATCH_GET_LIMIT]
            request = {
                table_name: {
                    'Keys': [{PARTITION_KEY: pk, ROW_KEY: rk} for pk, rk in chunk],
                    'ConsistentRead': True
                }
            }
            while request:
                try:
                    response = await asyncio.to_thread(self.dynamodb.batch_get_item, RequestItems=request)
                except ClientError as e:
                    raise map_dynamodb_error(e, "BatchGetItem", table_name) from e

                for item in response.get('Responses', {}).get(table_name, []):
                    yield item_to_record(item)

                request = response.get('UnprocessedKeys') or {}
                if request:
                    logger.debug(f"Re-requesting unprocessed keys from {table_name}")
