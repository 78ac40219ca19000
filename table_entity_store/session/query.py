"""
Entity Query

Lazy, re-iterable query over one entity type's table. Nothing is fetched until
the query is iterated, and every ``async for`` issues the query again.
Results come back newest write first and are not tracked by any session.

Example:
    >>> query = session.query(Employee).where(by_department, "Sales")
    >>> async for employee in query:
    ...     print(employee.name)
"""

import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Generic, List, Optional, TypeVar

from ..core import PARTITION_KEY, ROW_KEY
from ..core.filters import and_, eq, parse_filter
from ..keys import KeyStrategy

logger = logging.getLogger(__name__)

T = TypeVar('T')

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class EntityQuery(Generic[T]):
    """Filtered query returning materialized entities."""

    def __init__(self, store, entity_type: type, filter_expression: Optional[str] = None):
        if filter_expression:
            parse_filter(filter_expression)
        self._store = store
        self.entity_type = entity_type
        self.filter_expression = filter_expression or None

    def filter(self, expression: str) -> "EntityQuery[T]":
        """Return a new query narrowed by a raw filter expression.

        Raises:
            ValidationError: If the expression does not parse
        """
        parse_filter(expression)
        combined = and_(self.filter_expression, expression) if self.filter_expression else expression
        return EntityQuery(self._store, self.entity_type, combined)

    def where(self, strategy: KeyStrategy, value=None) -> "EntityQuery[T]":
        """Return a new query narrowed to the key a strategy builds for ``value``.

        Unique strategies match RowKey, others match PartitionKey.
        """
        column = ROW_KEY if strategy.is_unique else PARTITION_KEY
        return self.filter(eq(column, strategy.build_key(value)))

    async def __aiter__(self) -> AsyncIterator[T]:
        metadata = self._store.get_metadata(self.entity_type)
        table = await self._store.get_table(self.entity_type)
        logger.debug(f"Querying {metadata.table_name} with filter: {self.filter_expression}")

        records = [record async for record in table.query(self.filter_expression)]
        records.sort(key=lambda r: r.timestamp or _OLDEST, reverse=True)
        for record in records:
            yield metadata.marshaller.from_record(record.fields)

    async def to_list(self) -> List[T]:
        return [entity async for entity in self]

    async def first(self) -> Optional[T]:
        async for entity in self:
            return entity
        return None

    def __repr__(self) -> str:
        return f"EntityQuery({self.entity_type.__name__}, filter={self.filter_expression!r})"
