"""
Tests for the in-memory table service (core/memory.py)
"""

import pytest

from table_entity_store.core import InMemoryTableService, UpsertMergeAction
from table_entity_store.exceptions import ConflictError, ConnectionError

TABLE = "Widgets"


@pytest.fixture
def service():
    return InMemoryTableService()


async def rows(service, filter_expression=None):
    return [record async for record in service.query(TABLE, filter_expression)]


class TestTables:
    @pytest.mark.asyncio
    async def test_create_table_if_not_exists(self, service):
        assert not await service.table_exists(TABLE)

        await service.create_table_if_not_exists(TABLE)
        await service.upsert_merge(TABLE, UpsertMergeAction("p", "r", {"a": 1}))
        await service.create_table_if_not_exists(TABLE)

        assert await service.table_exists(TABLE)
        assert len(await rows(service)) == 1

    @pytest.mark.asyncio
    async def test_missing_table_raises_connection_error(self, service):
        with pytest.raises(ConnectionError) as exc_info:
            await service.get_entity(TABLE, "p", "r")

        assert exc_info.value.error_code == "ResourceNotFoundException"


class TestWrites:
    @pytest.mark.asyncio
    async def test_upsert_merge_issues_version_tag(self, service):
        await service.create_table_if_not_exists(TABLE)

        etag = await service.upsert_merge(TABLE, UpsertMergeAction("p", "r", {"a": 1}))
        record = await service.get_entity(TABLE, "p", "r")

        assert record.etag == etag
        assert record.timestamp is not None
        assert record.fields == {"a": 1}

    @pytest.mark.asyncio
    async def test_merge_keeps_unmentioned_fields(self, service):
        await service.create_table_if_not_exists(TABLE)
        await service.upsert_merge(TABLE, UpsertMergeAction("p", "r", {"a": 1, "b": 2}))

        await service.upsert_merge(TABLE, UpsertMergeAction("p", "r", {"b": 3}))

        assert (await service.get_entity(TABLE, "p", "r")).fields == {"a": 1, "b": 3}

    @pytest.mark.asyncio
    async def test_timestamps_strictly_increase(self, service):
        await service.create_table_if_not_exists(TABLE)
        for i in range(5):
            await service.upsert_merge(TABLE, UpsertMergeAction("p", f"r{i}", {}))

        timestamps = [record.timestamp for record in await rows(service)]

        assert timestamps == sorted(timestamps)
        assert len(set(timestamps)) == 5

    @pytest.mark.asyncio
    async def test_conditional_upsert(self, service):
        await service.create_table_if_not_exists(TABLE)
        etag = await service.upsert_merge(TABLE, UpsertMergeAction("p", "r", {"a": 1}, check_etag=True))

        with pytest.raises(ConflictError) as exc_info:
            await service.upsert_merge(TABLE, UpsertMergeAction("p", "r", {"a": 2}, check_etag=True))
        assert exc_info.value.error_code == "ConditionalCheckFailedException"

        with pytest.raises(ConflictError):
            await service.upsert_merge(TABLE, UpsertMergeAction("p", "r", {"a": 2}, if_match="stale", check_etag=True))

        await service.upsert_merge(TABLE, UpsertMergeAction("p", "r", {"a": 2}, if_match=etag, check_etag=True))
        assert (await service.get_entity(TABLE, "p", "r")).fields["a"] == 2

    @pytest.mark.asyncio
    async def test_stored_fields_are_copies(self, service):
        await service.create_table_if_not_exists(TABLE)
        fields = {"tags": ["a"]}
        await service.upsert_merge(TABLE, UpsertMergeAction("p", "r", fields))

        fields["tags"].append("b")
        record = await service.get_entity(TABLE, "p", "r")
        record.fields["tags"].append("c")

        assert (await service.get_entity(TABLE, "p", "r")).fields == {"tags": ["a"]}


class TestTransactions:
    @pytest.mark.asyncio
    async def test_transaction_is_all_or_nothing(self, service):
        await service.create_table_if_not_exists(TABLE)
        await service.upsert_merge(TABLE, UpsertMergeAction("p", "existing", {"a": 1}))

        actions = [
            UpsertMergeAction("p", "new", {"a": 1}, check_etag=True),
            UpsertMergeAction("p", "existing", {"a": 2}, if_match="stale", check_etag=True),
        ]
        with pytest.raises(ConflictError) as exc_info:
            await service.submit_transaction(TABLE, actions)

        assert exc_info.value.error_code == "TransactionCanceledException"
        assert await service.get_entity(TABLE, "p", "new") is None
        assert (await service.get_entity(TABLE, "p", "existing")).fields == {"a": 1}

    @pytest.mark.asyncio
    async def test_transaction_shares_one_version_tag(self, service):
        await service.create_table_if_not_exists(TABLE)
        actions = [UpsertMergeAction("p", f"r{i}", {"i": i}, check_etag=True) for i in range(3)]

        etags = await service.submit_transaction(TABLE, actions)

        assert len(etags) == 3
        assert len(set(etags)) == 1
        assert (await service.get_entity(TABLE, "p", "r1")).etag == etags[1]

    @pytest.mark.asyncio
    async def test_transaction_must_stay_in_one_partition(self, service):
        await service.create_table_if_not_exists(TABLE)
        actions = [UpsertMergeAction("p1", "r", {}), UpsertMergeAction("p2", "r", {})]

        with pytest.raises(ValueError):
            await service.submit_transaction(TABLE, actions)

    @pytest.mark.asyncio
    async def test_empty_transaction(self, service):
        assert await service.submit_transaction(TABLE, []) == []


class TestDeleteAndQuery:
    @pytest.mark.asyncio
    async def test_delete_absent_row_is_silent(self, service):
        await service.create_table_if_not_exists(TABLE)
        await service.delete_entity(TABLE, "p", "nothing")

    @pytest.mark.asyncio
    async def test_query_filters_on_keys_and_fields(self, service):
        await service.create_table_if_not_exists(TABLE)
        await service.upsert_merge(TABLE, UpsertMergeAction("p1", "r1", {"color": "red"}))
        await service.upsert_merge(TABLE, UpsertMergeAction("p1", "r2", {"color": "blue"}))
        await service.upsert_merge(TABLE, UpsertMergeAction("p2", "r1", {"color": "red"}))

        red = await rows(service, "color eq 'red'")
        p1_red = await rows(service, "PartitionKey eq 'p1' and color eq 'red'")

        assert sorted(record.key for record in red) == [("p1", "r1"), ("p2", "r1")]
        assert [record.key for record in p1_red] == [("p1", "r1")]
