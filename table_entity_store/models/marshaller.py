"""
Entity Marshaller

Converts between a typed entity and the flat record persisted in the table.

Writing (to_record):
- datetime -> ISO string in UTC (naive values take the configured default timezone)
- Enum -> member name
- lists and dicts are converted element by element
- everything else is stored as-is

Reading (from_record):
- values are coerced to each property's declared type: datetimes come back in
  the user's timezone, enums are looked up by name, stored numbers are
  narrowed to int/float/Decimal
- the constructor whose parameter names overlap most with the record's field
  names (case-insensitive) is invoked; ties keep the first one declared
- parameters missing from the record take their default, or None
- remaining settable properties present in the record are then assigned
"""

import enum
import logging
import typing
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from ..core.table_service import SYSTEM_FIELDS
from ..exceptions import MarshallingError
from ..utils.timezone import format_for_storage, parse_from_storage, to_user_timezone
from .schema import ConstructorDescriptor, EntitySchema

logger = logging.getLogger(__name__)

_NONE_TYPE = type(None)


def _unwrap_optional(annotation: Any) -> Any:
    if typing.get_origin(annotation) is typing.Union:
        args = [arg for arg in typing.get_args(annotation) if arg is not _NONE_TYPE]
        if len(args) == 1:
            return args[0]
    return annotation


class EntityMarshaller:
    """Record conversion for one entity type."""

    def __init__(self, schema: EntitySchema, default_timezone: str = "UTC", user_timezone: Optional[str] = None):
        self.schema = schema
        self.default_timezone = default_timezone
        self.user_timezone = user_timezone
        self._properties = [p for p in schema.properties if p.name not in SYSTEM_FIELDS]
        self._by_lower_name = {p.name.lower(): p for p in self._properties}

    @property
    def entity_type(self) -> type:
        return self.schema.entity_type

    # -------------------------------------------------------------------------
    # Entity -> record
    # -------------------------------------------------------------------------

    def to_storable(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            return value.name
        if isinstance(value, datetime):
            return format_for_storage(value, self.default_timezone)
        if isinstance(value, dict):
            return {k: self.to_storable(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.to_storable(v) for v in value]
        return value

    def to_record(self, entity: Any) -> Dict[str, Any]:
        """Flatten an entity into ``{property name: storable value}``."""
        return {p.name: self.to_storable(p.get(entity)) for p in self._properties}

    # -------------------------------------------------------------------------
    # Record -> entity
    # -------------------------------------------------------------------------

    def coerce(self, value: Any, annotation: Any) -> Any:
        """Convert a stored value to the declared property type."""
        if value is None or annotation is None:
            return value

        annotation = _unwrap_optional(annotation)
        origin = typing.get_origin(annotation)

        if origin in (list, typing.List):
            args = typing.get_args(annotation)
            if args and isinstance(value, (list, tuple)):
                return [self.coerce(v, args[0]) for v in value]
            return value

        if not isinstance(annotation, type):
            return value

        if issubclass(annotation, datetime):
            if isinstance(value, str):
                return parse_from_storage(value, self.user_timezone)
            if isinstance(value, datetime):
                return to_user_timezone(value, self.user_timezone)
            return value

        if issubclass(annotation, enum.Enum):
            if isinstance(value, annotation):
                return value
            try:
                return annotation[value]
            except KeyError:
                # Rows written by other tools may hold the member value
                return annotation(value)

        if annotation is bool:
            if isinstance(value, str) and value.lower() in ('true', 'false'):
                return value.lower() == 'true'
            return value

        if annotation is int and isinstance(value, (float, Decimal)) and value == int(value):
            return int(value)
        if annotation is float and isinstance(value, (int, Decimal)) and not isinstance(value, bool):
            return float(value)
        if annotation is Decimal and isinstance(value, (int, float)):
            return Decimal(str(value))

        return value

    def _select_constructor(self, available: Mapping[str, Any]) -> Optional[ConstructorDescriptor]:
        best = None
        best_coverage = -1
        for constructor in self.schema.constructors:
            coverage = sum(1 for name in constructor.parameter_names() if name.lower() in available)
            if coverage > best_coverage:
                best, best_coverage = constructor, coverage
        return best

    def from_record(self, fields: Mapping[str, Any]) -> Any:
        """Build an entity from record fields.

        Raises:
            MarshallingError: If no constructor can be satisfied by the record
        """
        fields = {k: v for k, v in fields.items() if k not in SYSTEM_FIELDS}
        try:
            values = {}
            for name, value in fields.items():
                prop = self._by_lower_name.get(name.lower())
                values[name.lower()] = self.coerce(value, prop.annotation if prop else None)
        except (KeyError, ValueError, TypeError) as e:
            raise MarshallingError(self.entity_type, fields.keys(), e) from e

        constructor = self._select_constructor(values)
        if constructor is None:
            raise MarshallingError(self.entity_type, fields.keys())

        kwargs = {}
        consumed = set()
        for slot in constructor.parameters:
            lowered = slot.name.lower()
            if lowered in values:
                kwargs[slot.argument] = values[lowered]
                consumed.add(lowered)
            elif not slot.has_default:
                kwargs[slot.argument] = None

        try:
            entity = constructor.factory(**kwargs)
        except Exception as e:
            logger.error(f"Failed to construct {self.entity_type.__name__} from record: {e}")
            raise MarshallingError(self.entity_type, fields.keys(), e) from e

        for lowered, prop in self._by_lower_name.items():
            if prop.settable and lowered in values and lowered not in consumed:
                prop.set(entity, values[lowered])

        return entity

    def fields_equal(self, entity: Any, fields: Mapping[str, Any]) -> bool:
        """Return True if a stored record holds exactly the entity's values.

        The stored side is normalised through from_record/to_record so that
        transport representations (e.g. Decimal vs int) do not count as changes.
        """
        staged = self.to_record(entity)
        stored = self.to_record(self.from_record(fields))
        return staged == stored
