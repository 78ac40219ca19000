# Base exception class
from .base import TableEntityStoreError

from .domain_exceptions import (
    AggregateCommitError,
    ConcurrencyError,
    ConflictError,
    ConnectionError,
    EntityCommitFailureError,
    InconsistentStateError,
    ItemNotFoundError,
    MarshallingError,
    MissingKeyError,
    RetryableError,
    ValidationError,
)

__all__ = [
    # Base exception
    "TableEntityStoreError",

    # Domain exceptions (alphabetically ordered)
    "AggregateCommitError",
    "ConcurrencyError",
    "ConflictError",
    "ConnectionError",
    "EntityCommitFailureError",
    "InconsistentStateError",
    "ItemNotFoundError",
    "MarshallingError",
    "MissingKeyError",
    "RetryableError",
    "ValidationError",
]
