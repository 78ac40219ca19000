from .entity_service import EntityService
from .query import EntityQuery
from .session import EntitySession
from .store import EntityMetadata, EntityStore, find_id_property

__all__ = [
    "EntityMetadata",
    "EntityQuery",
    "EntityService",
    "EntitySession",
    "EntityStore",
    "find_id_property",
]
