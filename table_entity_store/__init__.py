from .config import StoreConfig
from .exceptions import (
    AggregateCommitError,
    ConcurrencyError,
    ConflictError,
    ConnectionError,
    EntityCommitFailureError,
    InconsistentStateError,
    ItemNotFoundError,
    MarshallingError,
    MissingKeyError,
    TableEntityStoreError,
    ValidationError,
)
from .keys import (
    ConstantKeyStrategy,
    KeyStrategy,
    PropertyKeyStrategy,
)
from .models import (
    EntitySchema,
    entity_constructor,
)
from .core import (
    # Table services
    DynamoDBTableService,
    InMemoryTableService,
    TableService,
)
from .session import (
    EntityQuery,
    EntitySession,
    EntityStore,
)

__version__ = "1.0.0"
__all__ = [
    # Configuration
    "StoreConfig",

    # Exceptions
    "AggregateCommitError",
    "ConcurrencyError",
    "ConflictError",
    "ConnectionError",
    "EntityCommitFailureError",
    "InconsistentStateError",
    "ItemNotFoundError",
    "MarshallingError",
    "MissingKeyError",
    "TableEntityStoreError",
    "ValidationError",

    # Key strategies
    "ConstantKeyStrategy",
    "KeyStrategy",
    "PropertyKeyStrategy",

    # Entity description
    "EntitySchema",
    "entity_constructor",

    # Table services
    "DynamoDBTableService",
    "InMemoryTableService",
    "TableService",

    # Sessions
    "EntityQuery",
    "EntitySession",
    "EntityStore",
]
