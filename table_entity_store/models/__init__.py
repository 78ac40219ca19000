from .cached_entity import CachedEntity
from .marshaller import EntityMarshaller
from .schema import (
    ConstructorDescriptor,
    EntitySchema,
    ParameterSlot,
    PropertyDescriptor,
    describe_entity,
    entity_constructor,
)

__all__ = [
    "CachedEntity",
    "ConstructorDescriptor",
    "EntityMarshaller",
    "EntitySchema",
    "ParameterSlot",
    "PropertyDescriptor",
    "describe_entity",
    "entity_constructor",
]
