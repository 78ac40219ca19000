"""
Test configuration and fixtures for the entity store.

Unit tests run against a recording in-memory table service; integration
tests run the DynamoDB service against moto.
"""

import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

# Add parent directory to path so we can import table_entity_store
sys.path.insert(0, str(Path(__file__).parent.parent))

import boto3
import pytest
from moto import mock_aws

from table_entity_store import (
    ConnectionError,
    EntityStore,
    InMemoryTableService,
    PropertyKeyStrategy,
    StoreConfig,
)
from table_entity_store.core import UpsertMergeAction
from tests.helpers.models import Employee, Organization


class RecordingTableService(InMemoryTableService):
    """In-memory table service that records calls and can fail on demand."""

    def __init__(self):
        super().__init__()
        self.transactions: List[List[UpsertMergeAction]] = []
        self.get_calls: List[tuple] = []
        self.query_calls: List[Optional[str]] = []
        self.deletes: List[tuple] = []
        self.failing_partitions: Dict[str, Exception] = {}
        self.delete_error: Optional[Exception] = None
        self.failing_query: Optional[Callable[[str, str], bool]] = None

    def fail_partition(self, partition_key: str, error_code: str = "InternalServerError") -> None:
        self.failing_partitions[partition_key] = ConnectionError(
            f"Simulated failure for partition {partition_key}",
            error_code=error_code
        )

    def fail_queries(self, predicate: Callable[[str, str], bool]) -> None:
        """Fail every query for which predicate(table_name, filter_expression) holds."""
        self.failing_query = predicate

    def reset_calls(self) -> None:
        self.transactions.clear()
        self.get_calls.clear()
        self.query_calls.clear()
        self.deletes.clear()

    async def get_entity(self, table_name, partition_key, row_key):
        self.get_calls.append((table_name, partition_key, row_key))
        return await super().get_entity(table_name, partition_key, row_key)

    async def submit_transaction(self, table_name, actions):
        if actions and actions[0].partition_key in self.failing_partitions:
            raise self.failing_partitions[actions[0].partition_key]
        self.transactions.append(list(actions))
        return await super().submit_transaction(table_name, actions)

    async def delete_entity(self, table_name, partition_key, row_key):
        if self.delete_error is not None:
            raise self.delete_error
        self.deletes.append((table_name, partition_key, row_key))
        await super().delete_entity(table_name, partition_key, row_key)

    def query(self, table_name, filter_expression=None):
        self.query_calls.append(filter_expression)
        if self.failing_query is not None and self.failing_query(table_name, filter_expression or ""):
            return self._failed_query(table_name)
        return super().query(table_name, filter_expression)

    async def _failed_query(self, table_name):
        raise ConnectionError(f"Simulated query failure on {table_name}", error_code="RequestTimeout")
        yield


@pytest.fixture
def store_config():
    """Store configuration for testing."""
    return StoreConfig(
        aws_access_key_id="test_key",
        aws_secret_access_key="test_secret",
        region_name="us-east-1",
        endpoint_url=None,
        schema_name="Test",
        default_partition="Root",
        default_timezone="UTC",
        user_timezone="UTC",
        enable_debug_logging=False
    )


@pytest.fixture
def org_id_strategy():
    return PropertyKeyStrategy(Organization, "id")


@pytest.fixture
def org_external_id_strategy():
    return PropertyKeyStrategy(Organization, "external_id")


@pytest.fixture
def employee_id_strategy():
    return PropertyKeyStrategy(Employee, "employee_id")


@pytest.fixture
def department_strategy():
    return PropertyKeyStrategy(Employee, "department", is_unique=False)


@pytest.fixture
def strategies(org_id_strategy, org_external_id_strategy, employee_id_strategy, department_strategy):
    return [org_id_strategy, org_external_id_strategy, employee_id_strategy, department_strategy]


@pytest.fixture
def table_service():
    return RecordingTableService()


@pytest.fixture
def store(store_config, strategies, table_service):
    """Entity store over the recording in-memory table service."""
    return EntityStore(store_config, strategies, table_service)


@pytest.fixture
def session(store):
    return store.open_session()


# Sample Data Fixtures

@pytest.fixture
def sample_organization():
    return Organization(id="org-1", external_id="ext-1", name="Acme", employee_count=12)


@pytest.fixture
def sample_employees():
    return [
        Employee(employee_id="e-1", department="Sales", name="Ada"),
        Employee(employee_id="e-2", department="Sales", name="Grace"),
        Employee(employee_id="e-3", department="Engineering", name="Linus"),
    ]


# ===== moto fixtures =====

@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """Activate moto for the duration of a test."""
    with mock_aws():
        yield boto3.client('dynamodb', region_name='us-east-1')


@pytest.fixture
def dynamodb_store(mock_dynamodb, store_config, strategies):
    """Entity store over the DynamoDB table service, backed by moto."""
    return EntityStore(store_config, strategies)
