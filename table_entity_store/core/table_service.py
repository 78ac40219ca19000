"""
Table Service Contract

The session layer never talks to a storage SDK directly. It consumes the small
capability surface defined here:

- create_table_if_not_exists / table_exists
- get_entity (single row by PartitionKey/RowKey)
- upsert_merge (single write) and submit_transaction (single-partition batch)
- delete_entity
- query (filter string -> lazy stream of rows)

Every row travels as a TableRecord: the composite key, the opaque version tag
issued by the store, the write timestamp, and the flat field values.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

PARTITION_KEY = "PartitionKey"
ROW_KEY = "RowKey"
ETAG = "ETag"
TIMESTAMP = "Timestamp"

SYSTEM_FIELDS = frozenset({PARTITION_KEY, ROW_KEY, ETAG, TIMESTAMP})

EntityKey = Tuple[str, str]


@dataclass
class TableRecord:
    """A row read from the backing table."""

    partition_key: str
    row_key: str
    etag: Optional[str] = None
    timestamp: Optional[datetime] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> EntityKey:
        return self.partition_key, self.row_key


@dataclass
class UpsertMergeAction:
    """A create-or-merge write for one row.

    When ``check_etag`` is set the write is conditional on ``if_match``: the
    stored version tag must equal it, and ``None`` means the row must not exist.
    """

    partition_key: str
    row_key: str
    fields: Dict[str, Any]
    if_match: Optional[str] = None
    check_etag: bool = False

    @property
    def key(self) -> EntityKey:
        return self.partition_key, self.row_key


class TableService(ABC):
    """Asynchronous capability surface of a partition/row-key table store."""

    @abstractmethod
    async def table_exists(self, table_name: str) -> bool:
        """Return True if the table exists."""

    @abstractmethod
    async def create_table_if_not_exists(self, table_name: str) -> None:
        """Create the table unless it already exists."""

    @abstractmethod
    async def get_entity(self, table_name: str, partition_key: str, row_key: str) -> Optional[TableRecord]:
        """Fetch one row, or None if it does not exist."""

    @abstractmethod
    async def upsert_merge(self, table_name: str, action: UpsertMergeAction) -> str:
        """Create or merge one row and return its new version tag."""

    @abstractmethod
    async def submit_transaction(self, table_name: str, actions: List[UpsertMergeAction]) -> List[str]:
        """Apply all actions atomically and return the new version tags in order.

        Every row written by one transaction receives the same version tag.

        All actions must share one partition key.
        """

    @abstractmethod
    async def delete_entity(self, table_name: str, partition_key: str, row_key: str) -> None:
        """Delete one row. Deleting an absent row is not an error."""

    @abstractmethod
    def query(self, table_name: str, filter_expression: Optional[str] = None) -> AsyncIterator[TableRecord]:
        """Stream the rows matching a filter expression.

        The stream is lazy: nothing is requested until iteration starts, and
        each new iteration issues a new request.
        """


def ensure_single_partition(actions: List[UpsertMergeAction]) -> str:
    """Return the partition shared by all actions, or raise ValueError."""
    partitions = {action.partition_key for action in actions}
    if len(partitions) != 1:
        raise ValueError(f"A transaction must target exactly one partition, got {sorted(partitions)}")
    return partitions.pop()


class TableClient:
    """Handle on one table of a TableService."""

    def __init__(self, service: TableService, table_name: str):
        self.service = service
        self.table_name = table_name

    async def get_entity(self, partition_key: str, row_key: str) -> Optional[TableRecord]:
        return await self.service.get_entity(self.table_name, partition_key, row_key)

    async def upsert_merge(self, action: UpsertMergeAction) -> str:
        return await self.service.upsert_merge(self.table_name, action)

    async def submit_transaction(self, actions: List[UpsertMergeAction]) -> List[str]:
        return await self.service.submit_transaction(self.table_name, actions)

    async def delete_entity(self, partition_key: str, row_key: str) -> None:
        await self.service.delete_entity(self.table_name, partition_key, row_key)

    def query(self, filter_expression: Optional[str] = None) -> AsyncIterator[TableRecord]:
        return self.service.query(self.table_name, filter_expression)

    def __repr__(self) -> str:
        return f"TableClient(table_name={self.table_name!r})"
