"""
Entity Store

Process-wide registry shared by every session opened from it. Per entity type
it memoizes:

- metadata: display names, table name, schema, marshaller and the default
  identifier key strategy
- the key strategies registered for the type
- the table handle, creating the backing table on first access
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import inflection

from ..config import StoreConfig
from ..core import DynamoDBTableService, TableClient, TableService
from ..keys import KeyStrategy, PropertyKeyStrategy, format_key_value
from ..models import EntityMarshaller, EntitySchema, describe_entity

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "table_entity_store"


@dataclass
class EntityMetadata:
    """Everything the session layer needs to know about one entity type."""

    entity_type: type
    singular_name: str
    plural_name: str
    table_name: str
    schema: EntitySchema
    marshaller: EntityMarshaller
    id_property: Optional[str] = None
    id_key_strategy: Optional[PropertyKeyStrategy] = None

    def pick_id(self, entity: Any) -> Optional[str]:
        """Return the entity's identifier as text, if it has one."""
        if self.id_property is None:
            return None
        value = getattr(entity, self.id_property, None)
        return None if value is None else format_key_value(value)


def find_id_property(schema: EntitySchema, singular_name: str) -> Optional[str]:
    """Find the identifier property: ``id`` or ``<singular>_id`` in any casing."""
    candidates = {"id", f"{singular_name.lower()}id"}
    for prop in schema.properties:
        if prop.name.replace("_", "").lower() in candidates:
            return prop.name
    return None


class EntityStore:
    """Registry of entity metadata, key strategies and table handles."""

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        strategies: Iterable[KeyStrategy] = (),
        table_service: Optional[TableService] = None
    ):
        """Initialize the store.

        Args:
            config: Store configuration (read from the environment if omitted)
            strategies: Key strategies for all entity types
            table_service: Backing table service (DynamoDB if omitted)
        """
        self.config = config or StoreConfig.from_env()
        self.table_service = table_service or DynamoDBTableService(self.config)
        self._strategies: List[KeyStrategy] = list(strategies)
        self._schemas: Dict[type, EntitySchema] = {}
        self._metadata: Dict[type, EntityMetadata] = {}
        self._tables: Dict[type, TableClient] = {}

        if self.config.enable_debug_logging:
            logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG)

    def open_session(self):
        """Open a new unit of work against this store."""
        from .session import EntitySession
        return EntitySession(self)

    def register(self, entity_type: type, schema: Optional[EntitySchema] = None) -> EntityMetadata:
        """Register an entity type, optionally with an explicit schema.

        Replaces any metadata computed earlier for the type.
        """
        if schema is not None:
            self._schemas[entity_type] = schema
        self._metadata.pop(entity_type, None)
        return self.get_metadata(entity_type)

    def add_strategy(self, strategy: KeyStrategy) -> None:
        self._strategies.append(strategy)

    def get_metadata(self, entity_type: type) -> EntityMetadata:
        """Get (and memoize) metadata for an entity type."""
        metadata = self._metadata.get(entity_type)
        if metadata is not None:
            return metadata

        schema = self._schemas.get(entity_type) or describe_entity(entity_type)
        singular_name = entity_type.__name__
        plural_name = inflection.pluralize(singular_name)
        id_property = find_id_property(schema, singular_name)
        id_key_strategy = None
        if id_property is not None:
            id_key_strategy = PropertyKeyStrategy(entity_type, id_property, is_unique=True)

        metadata = EntityMetadata(
            entity_type=entity_type,
            singular_name=singular_name,
            plural_name=plural_name,
            table_name=self.config.get_table_name(plural_name),
            schema=schema,
            marshaller=EntityMarshaller(schema, self.config.default_timezone, self.config.user_timezone),
            id_property=id_property,
            id_key_strategy=id_key_strategy
        )
        self._metadata[entity_type] = metadata
        logger.debug(f"Registered entity type {singular_name} -> table {metadata.table_name}")
        return metadata

    def get_strategies(self, entity_type: type) -> List[KeyStrategy]:
        """Return the registered strategies that apply to an entity type."""
        return [s for s in self._strategies if s.applies_to(entity_type)]

    async def get_table(self, entity_type: type) -> TableClient:
        """Get the table handle for an entity type, creating the table on first use."""
        client = self._tables.get(entity_type)
        if client is not None:
            return client

        metadata = self.get_metadata(entity_type)
        if not await self.table_service.table_exists(metadata.table_name):
            logger.info(f"Creating table {metadata.table_name} for {metadata.singular_name}")
            await self.table_service.create_table_if_not_exists(metadata.table_name)

        client = TableClient(self.table_service, metadata.table_name)
        self._tables[entity_type] = client
        return client
