"""Tests for SupabaseRemote against a mocked Supabase client."""

from unittest.mock import MagicMock, patch

import pytest

from dokan_sync.config import Settings
from dokan_sync.protocols import RemoteAccess, RemoteOperationFailed
from dokan_sync.remote import SupabaseRemote, UnconfiguredRemote, create_supabase_client
from dokan_sync.types import RecordType, new_local_id


@pytest.fixture
def mock_client():
    """Supabase client whose query builders return themselves."""
    client = MagicMock()
    table = client.table.return_value
    for method in ("select", "insert", "update", "delete", "eq", "order"):
        getattr(table, method).return_value = table
    table.execute.return_value = MagicMock(data=[])
    return client


@pytest.fixture
def supabase_remote(mock_client):
    return SupabaseRemote(mock_client)


def _table(client):
    return client.table.return_value


class TestSupabaseRemote:
    def test_satisfies_protocol(self, supabase_remote):
        assert isinstance(supabase_remote, RemoteAccess)
        assert isinstance(UnconfiguredRemote(), RemoteAccess)

    @pytest.mark.asyncio
    async def test_create_strips_local_id(self, supabase_remote, mock_client):
        local_id = new_local_id()
        _table(mock_client).execute.return_value = MagicMock(
            data=[{"id": "c-1", "name": "Karim", "user_id": "u1"}]
        )

        created = await supabase_remote.create(
            RecordType.CUSTOMER, "u1", {"id": local_id, "name": "Karim"}
        )

        assert created["id"] == "c-1"
        mock_client.table.assert_called_with("customers")
        _table(mock_client).insert.assert_called_once_with({"name": "Karim", "user_id": "u1"})

    @pytest.mark.asyncio
    async def test_create_keeps_remote_id(self, supabase_remote, mock_client):
        _table(mock_client).execute.return_value = MagicMock(data=[{"id": "s-9"}])

        await supabase_remote.create(RecordType.SALE, "u1", {"id": "s-9", "total_amount": 10})

        _table(mock_client).insert.assert_called_once_with(
            {"id": "s-9", "total_amount": 10, "user_id": "u1"}
        )

    @pytest.mark.asyncio
    async def test_create_without_row_fails(self, supabase_remote):
        with pytest.raises(RemoteOperationFailed) as exc:
            await supabase_remote.create(RecordType.EXPENSE, "u1", {"amount": 5})
        assert exc.value.operation == "create"
        assert exc.value.record_type == RecordType.EXPENSE

    @pytest.mark.asyncio
    async def test_update_filters_by_id_and_owner(self, supabase_remote, mock_client):
        table = _table(mock_client)
        table.execute.return_value = MagicMock(data=[{"id": "s1", "paid_amount": 500}])

        updated = await supabase_remote.update(
            RecordType.SALE, "s1", {"id": "s1", "paid_amount": 500}, "u1"
        )

        assert updated["paid_amount"] == 500
        mock_client.table.assert_called_with("sales")
        table.update.assert_called_once_with({"paid_amount": 500})
        table.eq.assert_any_call("id", "s1")
        table.eq.assert_any_call("user_id", "u1")

    @pytest.mark.asyncio
    async def test_update_missing_row_fails(self, supabase_remote):
        with pytest.raises(RemoteOperationFailed):
            await supabase_remote.update(RecordType.SALE, "nope", {"paid_amount": 1}, "u1")

    @pytest.mark.asyncio
    async def test_delete(self, supabase_remote, mock_client):
        table = _table(mock_client)

        await supabase_remote.delete(RecordType.COLLECTION, "col-1", "u1")

        mock_client.table.assert_called_with("collections")
        table.delete.assert_called_once()
        table.eq.assert_any_call("id", "col-1")
        table.eq.assert_any_call("user_id", "u1")

    @pytest.mark.asyncio
    async def test_fetch_all(self, supabase_remote, mock_client):
        table = _table(mock_client)
        table.execute.return_value = MagicMock(data=[{"id": "p1"}, {"id": "p2"}])

        rows = await supabase_remote.fetch_all(RecordType.PRODUCT, "u1")

        assert [r["id"] for r in rows] == ["p1", "p2"]
        table.select.assert_called_once_with("*")
        table.eq.assert_called_once_with("user_id", "u1")
        table.order.assert_called_once_with("created_at", desc=True)

    @pytest.mark.asyncio
    async def test_client_errors_are_wrapped(self, supabase_remote, mock_client):
        boom = ConnectionError("network unreachable")
        _table(mock_client).execute.side_effect = boom

        with pytest.raises(RemoteOperationFailed) as exc:
            await supabase_remote.fetch_all(RecordType.SALE, "u1")

        assert exc.value.__cause__ is boom
        assert exc.value.operation == "fetch"


class TestUnconfiguredRemote:
    @pytest.mark.asyncio
    async def test_every_call_fails(self):
        remote = UnconfiguredRemote()
        with pytest.raises(RemoteOperationFailed):
            await remote.fetch_all(RecordType.SALE, "u1")
        with pytest.raises(RemoteOperationFailed):
            await remote.create(RecordType.SALE, "u1", {})


class TestCreateSupabaseClient:
    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            create_supabase_client(Settings(supabase_url=None, supabase_key=None))

    def test_builds_client(self):
        settings = Settings(supabase_url="https://shop.supabase.co/", supabase_key="anon-key")
        with patch("dokan_sync.remote.create_client") as create:
            create_supabase_client(settings)
        create.assert_called_once_with("https://shop.supabase.co", "anon-key")
