import os
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Load environment variables from .env file if it exists
load_dotenv()


class StoreConfig(BaseModel):
    """Configuration for the entity store connection and table layout."""

    aws_access_key_id: Optional[str] = Field(
        default_factory=lambda: os.getenv("AWS_ACCESS_KEY_ID"),
        description="AWS access key ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("AWS_SECRET_ACCESS_KEY"),
        description="AWS secret access key"
    )

    region_name: str = Field(
        default_factory=lambda: os.getenv("AWS_REGION", "us-east-1"),
        description="AWS region name"
    )

    endpoint_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("TABLE_STORE_ENDPOINT_URL"),
        description="Table service endpoint URL (for local development)"
    )

    # Table layout
    schema_name: str = Field(
        default_factory=lambda: os.getenv("TABLE_STORE_SCHEMA", ""),
        description="Prefix added to every derived table name"
    )

    default_partition: str = Field(
        default_factory=lambda: os.getenv("TABLE_STORE_DEFAULT_PARTITION", "Root"),
        description="Partition value used when an entity type has no partition strategy"
    )

    # Connection settings
    max_pool_connections: int = Field(
        default=50,
        description="Maximum number of connections in the connection pool"
    )

    retries: int = Field(
        default=3,
        description="Number of retry attempts for failed requests"
    )

    timeout_seconds: float = Field(
        default=30.0,
        description="Request timeout in seconds"
    )

    max_batch_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Maximum number of actions submitted in one transaction"
    )

    # Logging settings
    enable_debug_logging: bool = Field(
        default_factory=lambda: os.getenv("TABLE_STORE_DEBUG_LOGGING", "false").lower() == "true",
        description="Enable debug logging for store operations"
    )

    # Timezone settings
    default_timezone: str = Field(
        default_factory=lambda: os.getenv("TABLE_STORE_TIMEZONE", "UTC"),
        description="Timezone assumed for naive datetimes when writing"
    )

    user_timezone: Optional[str] = Field(
        default_factory=lambda: os.getenv("TABLE_STORE_USER_TIMEZONE"),
        description="Timezone datetimes are converted to when reading (process local time if unset)"
    )

    @field_validator('region_name')
    @classmethod
    def validate_region(cls, v):
        """Validate AWS region name."""
        if not v:
            raise ValueError("AWS region name is required")
        return v

    @field_validator('default_partition')
    @classmethod
    def validate_default_partition(cls, v):
        """Validate the fallback partition value."""
        if not v:
            raise ValueError("Default partition value is required")
        return v

    @field_validator('default_timezone', 'user_timezone')
    @classmethod
    def validate_timezone(cls, v):
        """Validate timezone string."""
        if v is None:
            return v

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Invalid timezone: {v}. Please use a valid IANA timezone identifier.") from None

        return v

    def get_table_name(self, plural_name: str) -> str:
        """Get the full table name for an entity type.

        Args:
            plural_name: Plural display name of the entity type

        Returns:
            Table name with the schema prefix applied
        """
        return f"{self.schema_name}{plural_name}"

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        """Create configuration from environment variables.

        Returns:
            StoreConfig instance
        """
        return cls()

    @classmethod
    def for_local_development(cls) -> 'StoreConfig':
        """Create configuration for a local DynamoDB endpoint.

        Returns:
            StoreConfig instance configured for local development
        """
        return cls(
            aws_access_key_id="local",
            aws_secret_access_key="local",
            region_name="us-east-1",
            endpoint_url="http://localhost:8000",
            schema_name="Dev",
            enable_debug_logging=True
        )

    model_config = ConfigDict(
        validate_assignment=True
    )
