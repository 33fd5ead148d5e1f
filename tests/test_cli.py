"""Tests for the dokan-sync command line."""

import asyncio
import json

import pytest

from dokan_sync import cli
from dokan_sync.connectivity import ManualConnectivitySignal
from dokan_sync.context import build_context
from dokan_sync.storage import LocalStore
from dokan_sync.types import OperationKind, PendingMutation, RecordType


@pytest.fixture
def cli_db(tmp_path, monkeypatch):
    db = tmp_path / "cli.db"
    monkeypatch.setenv("DOKAN_DB_PATH", str(db))
    monkeypatch.setenv("DOKAN_OWNER_SCOPE", "shop-1")
    return db


@pytest.fixture
def cli_signal(monkeypatch, cli_db, remote):
    """Route the CLI through a manual signal and the in-memory remote."""
    signal = ManualConnectivitySignal(online=True)

    def factory(settings):
        return build_context(settings, signal=signal, remote=remote)

    monkeypatch.setattr(cli, "build_context", factory)
    return signal


def _queue(db_path, record_id="s1"):
    mutation = PendingMutation(
        record_type=RecordType.SALE,
        operation=OperationKind.CREATE,
        record_id=record_id,
        owner_scope="shop-1",
        payload={"id": record_id, "total_amount": 100},
    )
    return asyncio.run(LocalStore(db_path).enqueue_mutation(mutation))


class TestStatus:
    def test_status(self, cli_signal, capsys):
        cli.main(["status"])
        out = capsys.readouterr().out
        assert "✓ online" in out
        assert "Pending changes: 0" in out
        assert "Last sync: never" in out

    def test_status_json(self, cli_signal, cli_db, capsys):
        _queue(cli_db)
        cli.main(["status", "--json"])
        data = json.loads(capsys.readouterr().out)
        assert data["is_online"] is True
        assert data["pending_count"] == 1
        assert data["cache"]["pending_mutations"] == 1


class TestSync:
    def test_sync_pushes_pending(self, cli_signal, cli_db, remote, capsys):
        _queue(cli_db)
        cli.main(["sync"])
        assert "✓ Pushed 1 of 1 changes" in capsys.readouterr().out
        assert "s1" in remote.tables[RecordType.SALE]

    def test_sync_nothing_pending(self, cli_signal, capsys):
        cli.main(["sync"])
        assert "No pending changes" in capsys.readouterr().out

    def test_sync_offline_fails(self, cli_signal, cli_db, capsys):
        cli_signal.set_online(False)
        _queue(cli_db)
        with pytest.raises(SystemExit) as exc:
            cli.main(["sync"])
        assert exc.value.code == 1
        assert "✗ Cannot sync while offline" in capsys.readouterr().out

    def test_sync_reports_failures(self, cli_signal, cli_db, remote, capsys):
        _queue(cli_db)
        remote.fail_when = lambda *args: True
        cli.main(["sync"])
        assert "1 changes failed and will be retried" in capsys.readouterr().out


class TestPull:
    def test_pull_one_type(self, cli_signal, remote, capsys):
        remote.seed(RecordType.SALE, {"id": "s1", "user_id": "shop-1"})
        cli.main(["pull", "sales"])
        assert "✓ Pulled 1 sales" in capsys.readouterr().out

    def test_pull_all(self, cli_signal, remote, capsys):
        remote.fail_when = lambda op, rt, *args: rt == RecordType.EXPENSE
        cli.main(["pull"])
        out = capsys.readouterr().out
        assert "✓ customers: 0" in out
        assert "✗ expenses: failed" in out

    def test_pull_unknown_type(self, cli_signal):
        with pytest.raises(SystemExit) as exc:
            cli.main(["pull", "invoices"])
        assert exc.value.code == 1


class TestPendingAndClear:
    def test_pending_empty(self, cli_signal, capsys):
        cli.main(["pending"])
        assert "✓ No pending changes" in capsys.readouterr().out

    def test_pending_lists_mutations(self, cli_signal, cli_db, capsys):
        _queue(cli_db, "s1")
        _queue(cli_db, "s2")
        cli.main(["pending"])
        out = capsys.readouterr().out
        assert "Pending changes (2)" in out
        assert "create sale:s1" in out

    def test_pending_json(self, cli_signal, cli_db, capsys):
        m = _queue(cli_db)
        cli.main(["pending", "--json"])
        [row] = json.loads(capsys.readouterr().out)
        assert row["mutation_id"] == m.mutation_id
        assert row["operation"] == "create"

    def test_clear_cache_keeps_pending(self, cli_signal, cli_db, capsys):
        _queue(cli_db)
        asyncio.run(LocalStore(cli_db).put(RecordType.CUSTOMER, {"id": "c1"}, "shop-1"))

        cli.main(["clear-cache", "--yes"])

        assert "✓ Cleared 1 cached records" in capsys.readouterr().out
        assert asyncio.run(LocalStore(cli_db).count_unreconciled()) == 1

    def test_clear_cache_aborted(self, cli_signal, monkeypatch, capsys):
        monkeypatch.setattr("builtins.input", lambda prompt: "n")
        cli.main(["clear-cache"])
        assert "Aborted" in capsys.readouterr().out
