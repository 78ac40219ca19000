"""
Entity Service - change tracking and commit engine for one entity type

Each session owns one EntityService per entity type. The service keeps a
tracking map ``(PartitionKey, RowKey) -> CachedEntity(entity, etag)``:

- load: cache hit returns the tracked instance; a miss fetches the row and
  starts tracking every key of the loaded entity
- store: stages the entity under every unique x partition key combination,
  without any I/O
- delete: deletes every key of the entity at once and stops tracking them
- commit_changes: optimistic-concurrency batch commit

Commit protocol:
1. Snapshot the tracking map
2. Fetch the current rows for exactly the snapshot's keys in one filtered query
3. Group entries by partition (a transaction cannot span partitions)
4. Reject entries whose captured version tag differs from the current one,
   and skip entries whose stored fields already equal the entity's fields
5. Submit one transaction per partition group (split at max_batch_size)
6. Re-fetch the written rows and re-track them with the new version tags
7. fail_fast raises the first failure; otherwise failures are collected and
   raised together once every group has been attempted

Not safe for concurrent use: the tracking map is a plain dict.
"""

import logging
from typing import Any, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from ..core import PARTITION_KEY, ROW_KEY, EntityKey, TableClient, UpsertMergeAction
from ..core.filters import and_, eq, keys_filter, prefix_range
from ..exceptions import (
    AggregateCommitError,
    ConcurrencyError,
    EntityCommitFailureError,
    InconsistentStateError,
    MissingKeyError,
    TableEntityStoreError,
    ValidationError,
)
from ..keys import KEY_SEPARATOR, ConstantKeyStrategy, KeyStrategy
from ..models import CachedEntity

logger = logging.getLogger(__name__)

T = TypeVar('T')


class EntityService(Generic[T]):
    """Tracks and commits the entities of one type within a session."""

    def __init__(self, store, entity_type: type):
        self._store = store
        self.entity_type = entity_type
        self.metadata = store.get_metadata(entity_type)
        self.marshaller = self.metadata.marshaller
        self._tracked: Dict[EntityKey, CachedEntity[T]] = {}

        strategies = store.get_strategies(entity_type)
        self.unique_strategies: List[KeyStrategy] = [s for s in strategies if s.is_unique]
        if not self.unique_strategies:
            if self.metadata.id_key_strategy is None:
                raise ValidationError(
                    f"Entity type {entity_type.__name__} has no unique key strategy and no identifier property"
                )
            self.unique_strategies = [self.metadata.id_key_strategy]

        self.partition_strategies: List[KeyStrategy] = [s for s in strategies if not s.is_unique]
        if not self.partition_strategies:
            self.partition_strategies = [ConstantKeyStrategy(store.config.default_partition, entity_type)]

    # -------------------------------------------------------------------------
    # Addressing
    # -------------------------------------------------------------------------

    @property
    def primary_strategy(self) -> KeyStrategy:
        """Unique strategy used when loading by a bare identifier."""
        id_strategy = self.metadata.id_key_strategy
        if id_strategy is not None:
            for strategy in self.unique_strategies:
                if strategy.key_prefix == id_strategy.key_prefix:
                    return strategy
        return self.unique_strategies[0]

    @property
    def tracked(self) -> Dict[EntityKey, CachedEntity[T]]:
        """Copy of the tracking map."""
        return dict(self._tracked)

    def keys_for(self, entity: T) -> List[EntityKey]:
        """Every (PartitionKey, RowKey) the entity is addressable by."""
        return [
            (partition.get_key(entity), unique.get_key(entity))
            for partition in self.partition_strategies
            for unique in self.unique_strategies
        ]

    def logical_id(self, entity: T) -> str:
        return self.metadata.pick_id(entity) or self.primary_strategy.get_key(entity)

    async def _table(self) -> TableClient:
        return await self._store.get_table(self.entity_type)

    def _track(self, key: EntityKey, entity: T, etag: Optional[str]) -> None:
        self._tracked[key] = CachedEntity(entity, etag)

    async def _start_tracking_loaded(self, table: TableClient, key: EntityKey, entity: T, etag: Optional[str]) -> None:
        self._track(key, entity, etag)
        try:
            siblings = [k for k in self.keys_for(entity) if k != key and k not in self._tracked]
        except MissingKeyError:
            return
        if not siblings:
            return
        records = {r.key: r async for r in table.query(keys_filter(siblings))}
        for sibling in siblings:
            record = records.get(sibling)
            self._track(sibling, entity, record.etag if record else None)

    # -------------------------------------------------------------------------
    # Load / Store / Delete
    # -------------------------------------------------------------------------

    def _cached(self, row_key: str, partition: KeyStrategy) -> Optional[T]:
        if partition.is_constant:
            cached = self._tracked.get((partition.get_key(), row_key))
            return cached.entity if cached else None
        for (partition_key, tracked_row_key), cached in self._tracked.items():
            if tracked_row_key == row_key and partition.owns(partition_key):
                return cached.entity
        return None

    async def load(self, identifier: Any, strategy: Optional[KeyStrategy] = None) -> Optional[T]:
        """Load an entity by a unique key value.

        Args:
            identifier: Value of the strategy's property (the identifier by default)
            strategy: Unique key strategy to address by

        Returns:
            The tracked entity, or None if no row exists

        Raises:
            InconsistentStateError: If several partitions hold the row key
        """
        strategy = strategy or self.primary_strategy
        if not strategy.is_unique:
            raise ValidationError(f"Cannot load {self.entity_type.__name__} by non-unique strategy {strategy!r}")

        row_key = strategy.build_key(identifier)
        partition = self.partition_strategies[0]

        cached = self._cached(row_key, partition)
        if cached is not None:
            logger.debug(f"Cache hit for {self.entity_type.__name__} {row_key}")
            return cached

        logger.debug(f"Cache miss for {self.entity_type.__name__} {row_key}")
        table = await self._table()

        if partition.is_constant:
            record = await table.get_entity(partition.get_key(), row_key)
        else:
            lookup = and_(eq(ROW_KEY, row_key), prefix_range(PARTITION_KEY, partition.key_prefix + KEY_SEPARATOR))
            records = [r async for r in table.query(lookup)]
            if len(records) > 1:
                raise InconsistentStateError(self.entity_type, row_key, [r.partition_key for r in records])
            record = records[0] if records else None

        if record is None:
            return None

        entity = self.marshaller.from_record(record.fields)
        await self._start_tracking_loaded(table, record.key, entity, record.etag)
        return entity

    def store(self, entity: T) -> List[EntityKey]:
        """Stage an entity under all of its keys. No I/O happens here.

        Storing the tracked instance again is a no-op; storing a different
        instance replaces it and keeps the version tag last seen for the key.
        """
        keys = self.keys_for(entity)
        for key in keys:
            current = self._tracked.get(key)
            if current is None:
                self._track(key, entity, None)
            elif current.entity is not entity:
                self._track(key, entity, current.etag)
        return keys

    async def delete(self, target: Any, strategy: Optional[KeyStrategy] = None) -> bool:
        """Delete an entity, or the entity with the given identifier.

        Returns:
            False if there was nothing to delete
        """
        if isinstance(target, self.entity_type):
            entity = target
        else:
            entity = await self.load(target, strategy)
            if entity is None:
                return False

        keys = list(dict.fromkeys(
            self.keys_for(entity) + [k for k, cached in self._tracked.items() if cached.entity is entity]
        ))
        table = await self._table()
        try:
            for partition_key, row_key in keys:
                await table.delete_entity(partition_key, row_key)
        finally:
            for key in keys:
                self._tracked.pop(key, None)

        logger.info(f"Deleted {self.entity_type.__name__} {self.logical_id(entity)} ({len(keys)} key(s))")
        return True

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    def _prepare(
        self,
        entries: Iterable[Tuple[EntityKey, CachedEntity[T]]],
        current: Dict[EntityKey, Any],
        fail_fast: bool,
        errors: List[Exception]
    ) -> List[Tuple[UpsertMergeAction, CachedEntity[T]]]:
        staged = []
        for key, cached in entries:
            record = current.get(key)
            actual_etag = record.etag if record is not None else None

            if cached.etag != actual_etag:
                error = ConcurrencyError(self.entity_type, self.logical_id(cached.entity), cached.etag, actual_etag, key)
                logger.warning(str(error))
                if fail_fast:
                    raise error
                errors.append(error)
                continue

            try:
                if record is not None and self.marshaller.fields_equal(cached.entity, record.fields):
                    logger.debug(f"No changes for {self.entity_type.__name__} {key}, skipping write")
                    continue
                fields = self.marshaller.to_record(cached.entity)
            except TableEntityStoreError as e:
                if fail_fast:
                    raise
                errors.append(e)
                continue

            action = UpsertMergeAction(key[0], key[1], fields, if_match=cached.etag, check_etag=True)
            staged.append((action, cached))
        return staged

    async def _refresh(
        self,
        table: TableClient,
        committed: List[Tuple[UpsertMergeAction, CachedEntity[T]]],
        refreshed: Dict[int, Any]
    ) -> None:
        keys = [action.key for action, _ in committed]
        records = {r.key: r async for r in table.query(keys_filter(keys))}
        for action, cached in committed:
            record = records.get(action.key)
            if record is None:
                logger.warning(f"{self.entity_type.__name__} {action.key} vanished right after commit")
                self._tracked.pop(action.key, None)
                continue
            entity = refreshed.get(id(cached.entity))
            if entity is None:
                entity = self.marshaller.from_record(record.fields)
                refreshed[id(cached.entity)] = entity
            self._track(action.key, entity, record.etag)

    async def commit_changes(self, fail_fast: bool = False) -> int:
        """Write every changed tracked entity to the table.

        Args:
            fail_fast: Raise on the first failure instead of collecting them

        Returns:
            Number of rows written

        Raises:
            ConcurrencyError / EntityCommitFailureError: First failure, when fail_fast
            AggregateCommitError: All failures, when not fail_fast
        """
        snapshot = dict(self._tracked)
        if not snapshot:
            return 0

        try:
            table = await self._table()
            current = {r.key: r async for r in table.query(keys_filter(snapshot))}
        except Exception as e:
            failure = EntityCommitFailureError(getattr(e, 'error_code', None), self.entity_type, list(snapshot), e)
            logger.error(f"Reading current {self.metadata.plural_name} before commit failed: {e}")
            if fail_fast:
                raise failure from e
            raise AggregateCommitError([failure]) from e

        groups: Dict[str, List[Tuple[EntityKey, CachedEntity[T]]]] = {}
        for key, cached in snapshot.items():
            groups.setdefault(key[0], []).append((key, cached))

        errors: List[Exception] = []
        refreshed: Dict[int, Any] = {}
        batch_size = self._store.config.max_batch_size
        written = 0

        for partition_key, entries in groups.items():
            staged = self._prepare(entries, current, fail_fast, errors)

            for start in range(0, len(staged), batch_size):
                batch = staged[start:start + batch_size]
                actions = [action for action, _ in batch]
                try:
                    await table.submit_transaction(actions)
                    await self._refresh(table, batch, refreshed)
                except Exception as e:
                    failure = EntityCommitFailureError(
                        getattr(e, 'error_code', None), self.entity_type, [a.key for a in actions], e
                    )
                    logger.error(f"Commit of {len(actions)} {self.metadata.plural_name} in partition {partition_key} failed: {e}")
                    if fail_fast:
                        raise failure from e
                    errors.append(failure)
                    continue

                written += len(actions)
                logger.info(f"Committed {len(actions)} {self.metadata.plural_name} in partition {partition_key}")

        if errors:
            raise AggregateCommitError(errors)
        return written
