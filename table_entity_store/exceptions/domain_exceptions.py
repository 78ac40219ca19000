"""
Domain-Specific Exceptions for the Entity Store

This module consolidates all exceptions that extend the base
TableEntityStoreError. Every failure is local to the offending key or type;
none of them leave the session's tracking map in a corrupt state.

Organized by category:
1. Validation and Mapping Errors
2. Resource Not Found Errors
3. Concurrency and Commit Errors
4. Infrastructure and Retry Errors
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from .base import TableEntityStoreError


# =============================================================================
# Validation and Mapping Errors
# =============================================================================

class ValidationError(TableEntityStoreError):
    """Raised when configuration, schema registration or input validation fails.

    Used for:
    - Entity types with no resolvable unique key strategy
    - Malformed filter expressions
    - Provider-side validation failures
    """

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None, original_error: Optional[Exception] = None, error_code: Optional[str] = None):
        """Initialize validation error.

        Args:
            message: Human-readable error message
            errors: Dictionary of field-level validation errors
            original_error: The original exception that caused this error
            error_code: Provider error code, if any
        """
        self.errors = errors or {}
        context = {}
        if self.errors:
            context['validation_errors'] = self.errors
        super().__init__(message, original_error, context, error_code)


class MarshallingError(TableEntityStoreError):
    """Raised when a record cannot be turned back into an entity.

    The record is either empty of usable fields or no declared constructor
    accepts the values it carries.
    """

    def __init__(self, entity_type: type, available_fields: Iterable[str], original_error: Optional[Exception] = None):
        self.entity_type = entity_type
        self.available_fields = sorted(available_fields)
        message = (
            f"Unable to load entity of type {entity_type.__name__}. There is no constructor that can be "
            f"satisfied by available values {', '.join(self.available_fields) or '(none)'}"
        )
        if original_error is not None:
            message += f": {original_error}"
        super().__init__(message, original_error, {'entity_type': entity_type.__name__})


class MissingKeyError(TableEntityStoreError):
    """Raised when a key strategy is evaluated against an absent value."""

    def __init__(self, entity_type: type, key_prefix: str):
        self.entity_type = entity_type
        self.key_prefix = key_prefix
        message = f"Cannot build key '{key_prefix}' for {entity_type.__name__}: the underlying value is None"
        super().__init__(message, context={'entity_type': entity_type.__name__, 'key_prefix': key_prefix})


# =============================================================================
# Resource Not Found Errors
# =============================================================================

class ItemNotFoundError(TableEntityStoreError):
    """Raised when a specific entity is required but not present in the table."""

    def __init__(self, table_name: str, key: dict, original_error: Optional[Exception] = None):
        """Initialize item not found error.

        Args:
            table_name: Name of the backing table
            key: The key that was not found
            original_error: The original exception that caused this error
        """
        self.table_name = table_name
        self.key = key
        message = f"Item not found in table '{table_name}' with key: {key}"
        context = {
            'table_name': table_name,
            'key': key
        }
        super().__init__(message, original_error, context)


class InconsistentStateError(TableEntityStoreError):
    """Raised when a lookup by logical id matches more than one row.

    A unique key strategy must identify at most one row; several matches mean
    the stored data violates that guarantee and the lookup cannot pick one.
    """

    def __init__(self, entity_type: type, row_key: str, partition_keys: List[str]):
        self.entity_type = entity_type
        self.row_key = row_key
        self.partition_keys = partition_keys
        message = (
            f"Found {len(partition_keys)} rows of type {entity_type.__name__} for row key '{row_key}' "
            f"in partitions {', '.join(partition_keys)}"
        )
        super().__init__(message, context={'entity_type': entity_type.__name__, 'row_key': row_key})


# =============================================================================
# Concurrency and Commit Errors
# =============================================================================

class ConflictError(TableEntityStoreError):
    """Raised when a conditional or transactional write fails on existing data.

    Used for:
    - ConditionalCheckFailedException from the backing store
    - Transaction conflicts
    - Optimistic locking failures
    """

    def __init__(self, message: str, resource_id: Optional[str] = None, original_error: Optional[Exception] = None, error_code: Optional[str] = None):
        """Initialize conflict error.

        Args:
            message: Human-readable error message
            resource_id: ID of the conflicting resource
            original_error: The original exception that caused this error
            error_code: Provider error code, if any
        """
        self.resource_id = resource_id
        context = {}
        if resource_id:
            context['resource_id'] = resource_id
        super().__init__(message, original_error, context, error_code)


class ConcurrencyError(ConflictError):
    """Raised when a tracked entity's version tag no longer matches the table.

    Another writer changed the row between the time this session read it and
    the time it tried to commit.
    """

    def __init__(self, entity_type: type, entity_id: str, expected_etag: Optional[str], actual_etag: Optional[str], key: Optional[Tuple[str, str]] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_etag = expected_etag
        self.actual_etag = actual_etag
        self.key = key
        message = (
            "An issue with concurrency has occurred. There have been changes made since the entity was last retrieved. "
            f"Type: {entity_type.__name__}, Id: {entity_id}, "
            f"ExpectedETag: {expected_etag or '(Empty)'}, ActualETag: {actual_etag or '(Empty)'}"
        )
        super().__init__(message, entity_id)


class EntityCommitFailureError(TableEntityStoreError):
    """Raised when the backing store rejects a write or a transaction batch."""

    def __init__(self, error_code: Optional[str], entity_type: Optional[type] = None, keys: Optional[List[Tuple[str, str]]] = None, original_error: Optional[Exception] = None):
        self.entity_type = entity_type
        self.keys = list(keys or [])
        message = f"An error occurred while committing with ErrorCode: {error_code}"
        context = {}
        if entity_type is not None:
            context['entity_type'] = entity_type.__name__
        if self.keys:
            context['keys'] = self.keys
        super().__init__(message, original_error, context, error_code)


class AggregateCommitError(TableEntityStoreError):
    """Raised after a non-fail-fast commit when one or more keys failed.

    Every partition group was attempted; ``errors`` holds each individual
    failure in the order it occurred.
    """

    def __init__(self, errors: List[Exception]):
        self.errors = list(errors)
        message = f"{len(self.errors)} error(s) occurred while committing changes: " + "; ".join(str(e) for e in self.errors)
        super().__init__(message, context={'error_count': len(self.errors)})


# =============================================================================
# Infrastructure and Retry Errors
# =============================================================================

class ConnectionError(TableEntityStoreError):
    """Raised when the backing table service cannot be reached or used.

    Used for:
    - Network connectivity issues
    - Authentication/authorization failures
    - Invalid endpoint configurations
    - Unknown provider errors
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None, context: Optional[Dict[str, Any]] = None, error_code: Optional[str] = None):
        """Initialize connection error.

        Args:
            message: Human-readable error message
            original_error: The original exception that caused this error
            context: Additional context information (e.g., endpoint, region)
            error_code: Provider error code, if any
        """
        super().__init__(message, original_error, context, error_code)


class RetryableError(TableEntityStoreError):
    """Raised when an operation fails due to temporary or throttling issues.

    This layer never retries on its own; callers decide whether to.
    """

    def __init__(self, message: str, retry_after_seconds: Optional[int] = None, original_error: Optional[Exception] = None, error_code: Optional[str] = None):
        """Initialize retryable error.

        Args:
            message: Human-readable error message
            retry_after_seconds: Suggested retry delay in seconds
            original_error: The original exception that caused this error
            error_code: Provider error code, if any
        """
        self.retry_after_seconds = retry_after_seconds
        context = {}
        if retry_after_seconds:
            context['retry_after_seconds'] = retry_after_seconds
        super().__init__(message, original_error, context, error_code)
