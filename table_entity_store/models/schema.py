"""
Entity Schema Descriptors

An EntitySchema is the explicit description of an entity type that the
marshaller works from: its properties (name, declared type, settable or not)
and the constructors that can build it, each with named parameter slots.

Schemas are derived once per type when it is registered with a store:

- pydantic models: ``model_fields`` (constructor parameters use field aliases)
- dataclasses: ``dataclasses.fields``
- other classes: annotated attributes and ``property`` objects, with the
  ``__init__`` signature as constructor

Alternate constructors are classmethods marked with ``@entity_constructor``.
A hand-written EntitySchema can be passed to ``EntityStore.register`` for
types that need something else.
"""

import dataclasses
import inspect
import typing
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

_MISSING = inspect.Parameter.empty


def entity_constructor(method):
    """Mark a classmethod as an alternate constructor for record loading.

    Example:
        class Employee:
            @entity_constructor
            @classmethod
            def hired(cls, id, name): ...
    """
    target = method.__func__ if isinstance(method, classmethod) else method
    target._entity_constructor = True
    return method


@dataclass(frozen=True)
class ParameterSlot:
    """A constructor parameter.

    ``name`` is matched against record fields; ``keyword`` is the argument name
    passed to the factory when it differs (pydantic field aliases).
    """

    name: str
    default: Any = _MISSING
    keyword: Optional[str] = None

    @property
    def argument(self) -> str:
        return self.keyword or self.name

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING


@dataclass
class ConstructorDescriptor:
    """A callable that builds the entity from keyword arguments."""

    factory: Callable[..., Any]
    parameters: List[ParameterSlot]

    def parameter_names(self) -> List[str]:
        return [p.name for p in self.parameters]


@dataclass
class PropertyDescriptor:
    name: str
    annotation: Any = None
    settable: bool = True

    def get(self, entity: Any) -> Any:
        return getattr(entity, self.name)

    def set(self, entity: Any, value: Any) -> None:
        setattr(entity, self.name, value)


@dataclass
class EntitySchema:
    entity_type: type
    properties: List[PropertyDescriptor]
    constructors: List[ConstructorDescriptor] = field(default_factory=list)

    def property_map(self) -> Dict[str, PropertyDescriptor]:
        """Properties keyed by lower-cased name."""
        return {p.name.lower(): p for p in self.properties}

    def find_property(self, name: str) -> Optional[PropertyDescriptor]:
        return self.property_map().get(name.lower())


def _signature_slots(func: Callable[..., Any], skip_first: bool = False) -> List[ParameterSlot]:
    parameters = list(inspect.signature(func).parameters.values())
    if skip_first and parameters:
        parameters = parameters[1:]
    return [
        ParameterSlot(p.name, p.default)
        for p in parameters
        if p.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    ]


def _marked_constructors(entity_type: type) -> List[ConstructorDescriptor]:
    constructors = []
    seen = set()
    for klass in entity_type.__mro__:
        for name, member in vars(klass).items():
            if name in seen or not isinstance(member, classmethod):
                continue
            if getattr(member.__func__, '_entity_constructor', False):
                seen.add(name)
                bound = getattr(entity_type, name)
                constructors.append(ConstructorDescriptor(bound, _signature_slots(bound)))
    return constructors


def _pydantic_schema(entity_type: typing.Type[BaseModel]) -> EntitySchema:
    frozen = bool(entity_type.model_config.get('frozen', False))
    properties = []
    slots = []
    for name, info in entity_type.model_fields.items():
        properties.append(PropertyDescriptor(name, info.annotation, not (frozen or info.frozen)))
        default = _MISSING if info.is_required() else info.get_default(call_default_factory=True)
        alias = info.validation_alias if isinstance(info.validation_alias, str) else info.alias
        slots.append(ParameterSlot(name, default, alias))
    return EntitySchema(entity_type, properties, [ConstructorDescriptor(entity_type, slots)])


def _dataclass_schema(entity_type: type) -> EntitySchema:
    frozen = entity_type.__dataclass_params__.frozen
    hints = typing.get_type_hints(entity_type)
    properties = []
    slots = []
    for item in dataclasses.fields(entity_type):
        properties.append(PropertyDescriptor(item.name, hints.get(item.name, item.type), not frozen))
        if not item.init:
            continue
        if item.default is not dataclasses.MISSING:
            default = item.default
        elif item.default_factory is not dataclasses.MISSING:
            default = item.default_factory()
        else:
            default = _MISSING
        slots.append(ParameterSlot(item.name, default))
    return EntitySchema(entity_type, properties, [ConstructorDescriptor(entity_type, slots)])


def _class_schema(entity_type: type) -> EntitySchema:
    properties: Dict[str, PropertyDescriptor] = {}
    for name, annotation in typing.get_type_hints(entity_type).items():
        if name.startswith('_') or typing.get_origin(annotation) is typing.ClassVar:
            continue
        properties[name] = PropertyDescriptor(name, annotation, True)

    for klass in reversed(entity_type.__mro__):
        for name, member in vars(klass).items():
            if isinstance(member, property) and not name.startswith('_'):
                annotation = typing.get_type_hints(member.fget).get('return') if member.fget else None
                properties[name] = PropertyDescriptor(name, annotation, member.fset is not None)

    constructors = []
    if entity_type.__init__ is not object.__init__:
        constructors.append(ConstructorDescriptor(entity_type, _signature_slots(entity_type.__init__, skip_first=True)))
    else:
        constructors.append(ConstructorDescriptor(entity_type, []))

    # Unannotated classes: fall back to the constructor's parameter names
    if not properties:
        for slot in constructors[0].parameters:
            properties[slot.name] = PropertyDescriptor(slot.name, None, True)
    return EntitySchema(entity_type, list(properties.values()), constructors)


def describe_entity(entity_type: type) -> EntitySchema:
    """Derive the schema of an entity type."""
    if isinstance(entity_type, type) and issubclass(entity_type, BaseModel):
        schema = _pydantic_schema(entity_type)
    elif dataclasses.is_dataclass(entity_type):
        schema = _dataclass_schema(entity_type)
    else:
        schema = _class_schema(entity_type)
    schema.constructors.extend(_marked_constructors(entity_type))
    return schema
