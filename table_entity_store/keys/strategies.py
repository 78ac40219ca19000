"""
Key Strategies

A key strategy turns an entity (or a bare value) into one half of a row's
composite address:

- unique strategies produce RowKeys; within a partition a RowKey identifies at
  most one entity
- non-unique strategies produce PartitionKeys and group entities together

Property strategies embed the property name in every key they build, as
``"{key_prefix}::{value}"``. The prefix is persisted verbatim, so renaming the
property behind a strategy is a breaking change for stored data.

Example:
    >>> by_email = PropertyKeyStrategy(User, "email")
    >>> by_email.build_key("a@example.com")
    'email::a@example.com'
"""

import enum
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Generic, Optional, TypeVar

from ..exceptions import MissingKeyError
from ..utils.timezone import to_utc

T = TypeVar('T')

KEY_SEPARATOR = "::"


def format_key_value(value: Any) -> str:
    """Render a property value as a key fragment."""
    if isinstance(value, enum.Enum):
        return value.name
    if isinstance(value, datetime):
        return to_utc(value).isoformat()
    return str(value)


class KeyStrategy(ABC, Generic[T]):
    """Pure mapping from an entity to a key fragment."""

    def __init__(self, entity_type: Optional[type], is_unique: bool, key_prefix: str):
        self.entity_type = entity_type
        self.is_unique = is_unique
        self.key_prefix = key_prefix

    @property
    def is_constant(self) -> bool:
        return False

    def applies_to(self, entity_type: type) -> bool:
        return self.entity_type is None or self.entity_type is entity_type

    def owns(self, key: str) -> bool:
        """Return True if ``key`` was produced by this strategy."""
        return key.startswith(self.key_prefix + KEY_SEPARATOR)

    @abstractmethod
    def get_key(self, entity: Optional[T] = None) -> str:
        """Build the key fragment for an entity.

        Raises:
            MissingKeyError: If the underlying value is None
        """

    def __repr__(self) -> str:
        entity_name = self.entity_type.__name__ if self.entity_type is not None else "*"
        return f"{self.__class__.__name__}({entity_name}, prefix={self.key_prefix!r}, unique={self.is_unique})"


class PropertyKeyStrategy(KeyStrategy[T]):
    """Key strategy reading one property of the entity."""

    def __init__(
        self,
        entity_type: type,
        property_name: str,
        is_unique: bool = True,
        accessor: Optional[Callable[[T], Any]] = None,
        key_prefix: Optional[str] = None
    ):
        super().__init__(entity_type, is_unique, key_prefix or property_name)
        self.property_name = property_name
        self._accessor = accessor or (lambda entity: getattr(entity, property_name))

    def value_of(self, entity: T) -> Any:
        return self._accessor(entity)

    def build_key(self, value: Any) -> str:
        """Build a key from a property value without a full entity.

        Raises:
            MissingKeyError: If value is None
        """
        if value is None:
            raise MissingKeyError(self.entity_type, self.key_prefix)
        return f"{self.key_prefix}{KEY_SEPARATOR}{format_key_value(value)}"

    def get_key(self, entity: Optional[T] = None) -> str:
        if entity is None:
            raise MissingKeyError(self.entity_type, self.key_prefix)
        return self.build_key(self.value_of(entity))


class ConstantKeyStrategy(KeyStrategy[T]):
    """Partition strategy that puts every entity in one fixed partition."""

    def __init__(self, value: str, entity_type: Optional[type] = None):
        super().__init__(entity_type, False, value)
        self.value = value

    @property
    def is_constant(self) -> bool:
        return True

    def owns(self, key: str) -> bool:
        return key == self.value

    def build_key(self, value: Any = None) -> str:
        return self.value

    def get_key(self, entity: Optional[T] = None) -> str:
        return self.value
