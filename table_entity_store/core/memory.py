"""
In-Memory Table Service

Dictionary-backed TableService with the same semantics as the DynamoDB
transport: merge writes, conditional version-tag checks, all-or-nothing
single-partition transactions, and lazy filtered queries. Useful for unit tests
and for running an application without a table endpoint.
"""

import copy
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from ..exceptions import ConflictError, ConnectionError
from .filters import parse_filter
from .table_service import (
    PARTITION_KEY,
    ROW_KEY,
    EntityKey,
    TableRecord,
    TableService,
    UpsertMergeAction,
    ensure_single_partition,
)

logger = logging.getLogger(__name__)


class _StoredRow:
    __slots__ = ("etag", "timestamp", "fields")

    def __init__(self, etag: str, timestamp: datetime, fields: Dict[str, Any]):
        self.etag = etag
        self.timestamp = timestamp
        self.fields = fields


class InMemoryTableService(TableService):
    """TableService keeping every table in process memory."""

    def __init__(self):
        self._tables: Dict[str, Dict[EntityKey, _StoredRow]] = {}
        self._last_timestamp: Optional[datetime] = None

    def _table(self, table_name: str) -> Dict[EntityKey, _StoredRow]:
        try:
            return self._tables[table_name]
        except KeyError:
            raise ConnectionError(
                f"Table not found - {table_name}",
                context={'table_name': table_name},
                error_code='ResourceNotFoundException'
            ) from None

    def _next_timestamp(self) -> datetime:
        # Strictly increasing so write order is always recoverable
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    @staticmethod
    def _to_record(key: EntityKey, row: _StoredRow) -> TableRecord:
        return TableRecord(
            partition_key=key[0],
            row_key=key[1],
            etag=row.etag,
            timestamp=row.timestamp,
            fields=copy.deepcopy(row.fields)
        )

    @staticmethod
    def _check_condition(rows: Dict[EntityKey, _StoredRow], action: UpsertMergeAction) -> bool:
        if not action.check_etag:
            return True
        current = rows.get(action.key)
        if action.if_match is None:
            return current is None
        return current is not None and current.etag == action.if_match

    def _apply(self, rows: Dict[EntityKey, _StoredRow], action: UpsertMergeAction, etag: str) -> str:
        current = rows.get(action.key)
        fields = dict(current.fields) if current is not None else {}
        fields.update(copy.deepcopy(action.fields))
        rows[action.key] = _StoredRow(etag, self._next_timestamp(), fields)
        return etag

    async def table_exists(self, table_name: str) -> bool:
        return table_name in self._tables

    async def create_table_if_not_exists(self, table_name: str) -> None:
        if table_name not in self._tables:
            self._tables[table_name] = {}
            logger.info(f"Created in-memory table {table_name}")

    async def get_entity(self, table_name: str, partition_key: str, row_key: str) -> Optional[TableRecord]:
        row = self._table(table_name).get((partition_key, row_key))
        if row is None:
            return None
        return self._to_record((partition_key, row_key), row)

    async def upsert_merge(self, table_name: str, action: UpsertMergeAction) -> str:
        rows = self._table(table_name)
        if not self._check_condition(rows, action):
            raise ConflictError(
                f"Conditional check failed - UpsertMerge on {table_name}",
                action.row_key,
                error_code='ConditionalCheckFailedException'
            )
        return self._apply(rows, action, uuid.uuid4().hex)

    async def submit_transaction(self, table_name: str, actions: List[UpsertMergeAction]) -> List[str]:
        if not actions:
            return []
        ensure_single_partition(actions)
        rows = self._table(table_name)

        failed = [action.row_key for action in actions if not self._check_condition(rows, action)]
        if failed:
            raise ConflictError(
                f"Transaction cancelled - conditional check failed for {', '.join(failed)} on {table_name}",
                failed[0],
                error_code='TransactionCanceledException'
            )

        etag = uuid.uuid4().hex
        etags = [self._apply(rows, action, etag) for action in actions]
        logger.info(f"Transaction of {len(actions)} action(s) completed on {table_name}")
        return etags

    async def delete_entity(self, table_name: str, partition_key: str, row_key: str) -> None:
        self._table(table_name).pop((partition_key, row_key), None)

    async def query(self, table_name: str, filter_expression: Optional[str] = None) -> AsyncIterator[TableRecord]:
        node = parse_filter(filter_expression) if filter_expression else None
        rows = self._table(table_name)

        matches = []
        for key, row in list(rows.items()):
            values = {PARTITION_KEY: key[0], ROW_KEY: key[1], **row.fields}
            if node is None or node.evaluate(values):
                matches.append(self._to_record(key, row))

        for record in matches:
            yield record
