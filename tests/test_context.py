"""Tests for SyncContext wiring."""

from unittest.mock import patch

import pytest

from dokan_sync.config import Settings
from dokan_sync.connectivity import HttpProbeSignal, ManualConnectivitySignal
from dokan_sync.context import build_context
from dokan_sync.remote import SupabaseRemote, UnconfiguredRemote
from dokan_sync.types import OperationKind, RecordType


def test_without_supabase_everything_is_local(tmp_path):
    ctx = build_context(Settings(db_path=tmp_path / "x.db", owner_scope="shop-1"))
    assert isinstance(ctx.signal, ManualConnectivitySignal)
    assert isinstance(ctx.remote, UnconfiguredRemote)
    assert ctx.monitor.is_online is False


def test_with_supabase(tmp_path):
    settings = Settings(
        db_path=tmp_path / "x.db",
        supabase_url="https://shop.supabase.co",
        supabase_key="anon-key",
        sync_interval_seconds=120,
    )
    with patch("dokan_sync.remote.create_client") as create:
        ctx = build_context(settings)

    create.assert_called_once()
    assert isinstance(ctx.remote, SupabaseRemote)
    assert isinstance(ctx.signal, HttpProbeSignal)
    assert ctx.engine._periodic.interval == 120


@pytest.mark.asyncio
async def test_context_lifecycle(tmp_path, remote):
    signal = ManualConnectivitySignal(online=False)
    settings = Settings(db_path=tmp_path / "x.db", owner_scope="shop-1")

    async with build_context(settings, signal=signal, remote=remote) as ctx:
        assert ctx.engine._periodic.is_running
        record = await ctx.repository.write(
            RecordType.CUSTOMER, OperationKind.CREATE, {"name": "Karim"}, "shop-1"
        )
        assert (await ctx.repository.status())["pending_count"] == 1
        assert ctx.engine.state.pending_count == 1

    assert not ctx.engine._periodic.is_running
    # Reconnecting after close no longer triggers anything
    signal.set_online(True)
    assert ctx.monitor.is_online is False
    assert record["name"] == "Karim"
