"""
Core infrastructure for talking to the backing table store.

- TableService: the asynchronous capability surface the session layer consumes
- TableClient: handle on one table of a service
- DynamoDBTableService: boto3 implementation
- InMemoryTableService: process-local implementation for tests and local runs
- filters: the query filter grammar and its builders
"""

from . import filters
from .memory import InMemoryTableService
from .table_gateway import DynamoDBTableService, map_dynamodb_error
from .table_service import (
    ETAG,
    PARTITION_KEY,
    ROW_KEY,
    TIMESTAMP,
    EntityKey,
    TableClient,
    TableRecord,
    TableService,
    UpsertMergeAction,
)

__all__ = [
    "ETAG",
    "PARTITION_KEY",
    "ROW_KEY",
    "TIMESTAMP",
    "DynamoDBTableService",
    "EntityKey",
    "InMemoryTableService",
    "TableClient",
    "TableRecord",
    "TableService",
    "UpsertMergeAction",
    "filters",
    "map_dynamodb_error",
]
