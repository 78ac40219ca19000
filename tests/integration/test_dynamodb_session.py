"""
End-to-end tests of sessions over the DynamoDB table service.

DynamoDB is mocked with moto, so these tests exercise real boto3 request
construction: table creation, conditional transactions, BatchGetItem, Query
and Scan planning.

Key testing scenarios:
1. Organization lifecycle across the Id and ExternalId keys
2. Concurrency detection between two sessions
3. Partitioned entities loaded by row key across partitions
4. Timezone handling through storage
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from table_entity_store.core.filters import eq
from table_entity_store.exceptions import AggregateCommitError, ConcurrencyError
from tests.helpers.models import Employee, Invoice, Organization, Team

pytestmark = pytest.mark.integration


async def seed(store, *entities):
    session = store.open_session()
    for entity in entities:
        session.store(entity)
    await session.save_changes()


class TestOrganizationLifecycle:
    """Organization with two unique keys in the default partition."""

    @pytest.mark.asyncio
    async def test_table_created_on_first_use(self, dynamodb_store, mock_dynamodb):
        await dynamodb_store.get_table(Organization)

        description = mock_dynamodb.describe_table(TableName="TestOrganizations")['Table']
        key_schema = {k['AttributeName']: k['KeyType'] for k in description['KeySchema']}
        assert key_schema == {'PartitionKey': 'HASH', 'RowKey': 'RANGE'}

    @pytest.mark.asyncio
    async def test_store_load_update_delete(self, dynamodb_store, mock_dynamodb, org_external_id_strategy):
        session = dynamodb_store.open_session()
        session.store(Organization(id="org-1", external_id="ext-1", name="Acme", employee_count=12))
        assert await session.save_changes() == 2

        items = mock_dynamodb.scan(TableName="TestOrganizations")['Items']
        assert sorted(item['RowKey']['S'] for item in items) == ["external_id::ext-1", "id::org-1"]
        assert all(item['PartitionKey']['S'] == "Root" for item in items)
        assert all('ETag' in item and 'Timestamp' in item for item in items)

        reader = dynamodb_store.open_session()
        org = await reader.load(Organization, "ext-1", org_external_id_strategy)
        assert org.name == "Acme"
        assert org.employee_count == 12

        org.name = "Acme Corp"
        assert await reader.save_changes() == 2
        assert await reader.save_changes() == 0

        fresh = await dynamodb_store.open_session().load(Organization, "org-1")
        assert fresh.name == "Acme Corp"

        assert await reader.delete(Organization, "org-1") is True
        assert mock_dynamodb.scan(TableName="TestOrganizations")['Items'] == []

    @pytest.mark.asyncio
    async def test_concurrent_sessions(self, dynamodb_store):
        await seed(dynamodb_store, Organization(id="org-1", external_id="ext-1", name="Acme"))
        mine = dynamodb_store.open_session()
        theirs = dynamodb_store.open_session()
        org = await mine.load(Organization, "org-1")
        other = await theirs.load(Organization, "org-1")

        other.name = "Theirs"
        await theirs.save_changes()
        org.name = "Mine"

        with pytest.raises(AggregateCommitError) as exc_info:
            await mine.save_changes()

        assert all(isinstance(error, ConcurrencyError) for error in exc_info.value.errors)
        assert (await dynamodb_store.open_session().load(Organization, "org-1")).name == "Theirs"

    @pytest.mark.asyncio
    async def test_load_all_and_query(self, dynamodb_store):
        await seed(
            dynamodb_store,
            Organization(id="org-1", external_id="ext-1", name="Acme"),
            Organization(id="org-2", external_id="ext-2", name="Globex"),
        )
        session = dynamodb_store.open_session()

        organizations = await session.load_all(Organization)
        globex = await session.query(Organization, eq("name", "Globex")).to_list()

        assert sorted(org.id for org in organizations) == ["org-1", "org-2"]
        assert {org.id for org in globex} == {"org-2"}


class TestPartitionedEntities:
    """Employees partitioned by department."""

    @pytest.mark.asyncio
    async def test_load_across_partitions(self, dynamodb_store, department_strategy):
        await seed(
            dynamodb_store,
            Employee(employee_id="e-1", department="Sales", name="Ada", team=Team.DATA, skills=["sql"]),
            Employee(employee_id="e-2", department="Engineering", name="Linus", salary=1234.5),
        )
        session = dynamodb_store.open_session()

        ada = await session.load(Employee, "e-1")
        linus = await session.load(Employee, "e-2")
        sales = await session.query(Employee).where(department_strategy, "Sales").to_list()

        assert ada.team is Team.DATA
        assert ada.skills == ["sql"]
        assert linus.salary == 1234.5
        assert [employee.employee_id for employee in sales] == ["e-1"]

    @pytest.mark.asyncio
    async def test_datetimes_stored_in_utc(self, dynamodb_store, mock_dynamodb):
        start = datetime(2024, 6, 1, 9, 0, tzinfo=ZoneInfo("Europe/Berlin"))
        await seed(dynamodb_store, Employee(employee_id="e-1", department="Sales", name="Ada", start_date=start))

        item = mock_dynamodb.scan(TableName="TestEmployees")['Items'][0]
        assert item['start_date']['S'] == "2024-06-01T07:00:00+00:00"

        loaded = await dynamodb_store.open_session().load(Employee, "e-1")
        assert loaded.start_date == start
        assert loaded.start_date.utcoffset() == timezone.utc.utcoffset(None)


class TestDefaults:
    @pytest.mark.asyncio
    async def test_dataclass_in_default_partition(self, dynamodb_store):
        await seed(dynamodb_store, Invoice("inv-1", "Acme", 99.5, True))

        invoice = await dynamodb_store.open_session().load(Invoice, "inv-1")

        assert invoice == Invoice("inv-1", "Acme", 99.5, True)
