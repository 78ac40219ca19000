from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass
class CachedEntity(Generic[T]):
    """A tracked entity and the version tag last seen for its key.

    ``etag`` is None until the entity has been read from, or written to, the table.
    """

    entity: T
    etag: Optional[str] = None

    def __iter__(self):
        yield self.entity
        yield self.etag

    def __repr__(self) -> str:
        entity: Any = self.entity
        return f"CachedEntity(entity={entity!r}, etag={self.etag!r})"
