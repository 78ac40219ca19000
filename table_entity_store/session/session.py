"""
Entity Session - unit of work over an EntityStore

A session lazily creates one EntityService per entity type it touches and
remembers the order in which types were first touched; save_changes commits
the types in that order.

Example:
    >>> session = store.open_session()
    >>> org = await session.load(Organization, "org-1")
    >>> org.name = "Renamed"
    >>> session.store(org)
    >>> await session.save_changes()

A session is not safe for concurrent use. Open one per logical unit of work.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from ..core import PARTITION_KEY
from ..core.filters import eq
from ..exceptions import AggregateCommitError, ItemNotFoundError, TableEntityStoreError, ValidationError
from ..keys import KeyStrategy
from .entity_service import EntityService
from .query import EntityQuery

logger = logging.getLogger(__name__)

T = TypeVar('T')


class EntitySession:
    """Tracks loaded and staged entities and commits them together."""

    def __init__(self, store):
        self._store = store
        self._services: Dict[type, EntityService] = {}

    def service_for(self, entity_type: Type[T]) -> EntityService[T]:
        """Get the EntityService for a type, creating it on first touch."""
        service = self._services.get(entity_type)
        if service is None:
            service = EntityService(self._store, entity_type)
            self._services[entity_type] = service
        return service

    @property
    def entity_types(self) -> List[type]:
        """Entity types touched so far, in first-touch order."""
        return list(self._services)

    async def load(self, entity_type: Type[T], identifier: Any, strategy: Optional[KeyStrategy] = None) -> Optional[T]:
        return await self.service_for(entity_type).load(identifier, strategy)

    async def load_or_raise(self, entity_type: Type[T], identifier: Any, strategy: Optional[KeyStrategy] = None) -> T:
        """Load an entity, raising ItemNotFoundError if it does not exist."""
        entity = await self.load(entity_type, identifier, strategy)
        if entity is None:
            service = self.service_for(entity_type)
            row_key = (strategy or service.primary_strategy).build_key(identifier)
            raise ItemNotFoundError(service.metadata.table_name, row_key)
        return entity

    async def load_many(
        self,
        entity_type: Type[T],
        identifiers: Iterable[Any],
        strategy: Optional[KeyStrategy] = None
    ) -> Dict[Any, Optional[T]]:
        """Load several entities by identifier; missing ones map to None."""
        return {identifier: await self.load(entity_type, identifier, strategy) for identifier in identifiers}

    def store(self, entity: Any) -> None:
        """Stage an entity for the next save_changes."""
        self.service_for(type(entity)).store(entity)

    async def delete(self, target: Any, identifier: Any = None, strategy: Optional[KeyStrategy] = None) -> bool:
        """Delete an entity immediately.

        Either ``delete(entity)`` or ``delete(EntityType, identifier)``.
        """
        if identifier is None:
            if isinstance(target, type):
                raise ValidationError(f"Deleting by type {target.__name__} requires an identifier")
            return await self.service_for(type(target)).delete(target)
        return await self.service_for(target).delete(identifier, strategy)

    async def save_changes(self, fail_fast: bool = False) -> int:
        """Commit every touched entity type in first-touch order.

        Returns:
            Number of rows written

        Raises:
            AggregateCommitError: Failures of every type, after all types were attempted
        """
        errors = []
        written = 0
        for entity_type, service in list(self._services.items()):
            try:
                written += await service.commit_changes(fail_fast=fail_fast)
            except AggregateCommitError as e:
                logger.error(f"Saving {entity_type.__name__} changes failed with {len(e.errors)} error(s)")
                errors.extend(e.errors)
            except TableEntityStoreError as e:
                if fail_fast:
                    raise
                logger.error(f"Saving {entity_type.__name__} changes failed: {e}")
                errors.append(e)

        if errors:
            raise AggregateCommitError(errors)
        logger.debug(f"Saved {written} row(s) across {len(self._services)} entity type(s)")
        return written

    def query(self, entity_type: Type[T], filter_expression: Optional[str] = None) -> EntityQuery[T]:
        """Build a lazy query over an entity type. Results are not tracked."""
        self.service_for(entity_type)
        return EntityQuery(self._store, entity_type, filter_expression)

    async def load_all(self, entity_type: Type[T], value: Any = None, strategy: Optional[KeyStrategy] = None) -> List[T]:
        """Load every entity in one partition, one instance per logical id.

        Args:
            entity_type: Entity type to load
            value: Partition property value (ignored for constant partitions)
            strategy: Partition strategy (the type's first one by default)
        """
        service = self.service_for(entity_type)
        strategy = strategy or service.partition_strategies[0]
        query = EntityQuery(self._store, entity_type, eq(PARTITION_KEY, strategy.build_key(value)))

        seen = set()
        entities = []
        async for entity in query:
            logical_id = service.logical_id(entity)
            if logical_id in seen:
                continue
            seen.add(logical_id)
            entities.append(entity)
        return entities
