"""Command-line interface for dokan_sync.

Usage:
    dokan-sync status [--json]
    dokan-sync sync
    dokan-sync pull [TYPE]
    dokan-sync pending [--json]
    dokan-sync clear-cache [--yes]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from dokan_sync.config import Settings, get_settings
from dokan_sync.context import SyncContext, build_context
from dokan_sync.logging_config import setup_dokan_logging
from dokan_sync.protocols import DokanSyncError
from dokan_sync.types import RecordType

logger = logging.getLogger(__name__)


def _require_scope(args, ctx: SyncContext) -> str:
    scope = args.scope or ctx.owner_scope
    if not scope:
        raise ValueError("No owner scope: pass --scope or set DOKAN_OWNER_SCOPE")
    return scope


async def cmd_status(args, ctx: SyncContext):
    """Show connectivity, queue and cache status."""
    status = await ctx.repository.status()
    stats = await ctx.store.get_stats()
    last_sync = await ctx.engine.get_last_sync_time()

    if args.json:
        print(json.dumps({**status, "last_sync": last_sync, "cache": stats}, indent=2, default=str))
        return

    print("Sync Status")
    print("=" * 40)
    print(f"Connection: {'✓ online' if status['is_online'] else '✗ offline'}")
    if status["last_online_at"]:
        print(f"Last online: {status['last_online_at']:%Y-%m-%d %H:%M:%S}")
    print(f"Last sync: {last_sync:%Y-%m-%d %H:%M:%S}" if last_sync else "Last sync: never")
    print(f"Pending changes: {status['pending_count']}")
    print()
    print("Cached records:")
    for rt in RecordType:
        print(f"  {rt.table_name:<12} {stats.get(rt.value, 0)}")


async def cmd_sync(args, ctx: SyncContext):
    """Push pending changes now."""
    result = await ctx.engine.force_sync()
    if result.skipped:
        print(f"⚠️  Sync skipped: {result.reason}")
        return
    if result.attempted == 0:
        print("✓ No pending changes to push")
        return
    print(f"✓ Pushed {result.reconciled} of {result.attempted} changes")
    if result.failed:
        print(f"⚠️  {len(result.failed)} changes failed and will be retried")


async def cmd_pull(args, ctx: SyncContext):
    """Download remote records into the local cache."""
    scope = _require_scope(args, ctx)
    if args.type:
        rt = RecordType.parse(args.type)
        count = await ctx.engine.pull_snapshot(rt, scope)
        print(f"✓ Pulled {count} {rt.table_name}")
        return

    counts = await ctx.engine.pull_all(scope)
    for rt in RecordType:
        if rt.value in counts:
            print(f"✓ {rt.table_name}: {counts[rt.value]}")
        else:
            print(f"✗ {rt.table_name}: failed")


async def cmd_pending(args, ctx: SyncContext):
    """List mutations waiting for the remote system."""
    mutations = await ctx.store.list_unreconciled_mutations()

    if args.json:
        rows = [
            {
                "mutation_id": m.mutation_id,
                "record_type": m.record_type.value,
                "operation": m.operation.value,
                "record_id": m.record_id,
                "owner_scope": m.owner_scope,
                "enqueued_at": m.enqueued_at,
                "attempt_count": m.attempt_count,
                "last_error": m.last_error,
            }
            for m in mutations
        ]
        print(json.dumps(rows, indent=2, default=str))
        return

    if not mutations:
        print("✓ No pending changes")
        return

    print(f"Pending changes ({len(mutations)}):")
    for m in mutations:
        line = (
            f"  {m.enqueued_at:%Y-%m-%d %H:%M:%S}  {m.operation.value:<6} "
            f"{m.record_type.value}:{m.record_id}"
        )
        if m.attempt_count:
            line += f"  (attempts: {m.attempt_count})"
        print(line)
        if m.last_error:
            print(f"      last error: {m.last_error[:100]}")


async def cmd_clear_cache(args, ctx: SyncContext):
    """Drop cached records. Pending changes are kept."""
    if not args.yes:
        answer = input("Clear all cached records? Pending changes are kept. [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted")
            return
    count = await ctx.store.clear_all_cache()
    print(f"✓ Cleared {count} cached records")


COMMANDS = {
    "status": cmd_status,
    "sync": cmd_sync,
    "pull": cmd_pull,
    "pending": cmd_pending,
    "clear-cache": cmd_clear_cache,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dokan-sync",
        description="Offline sync for the Shop Ledger bookkeeping app",
    )
    parser.add_argument("--scope", "-s", help="Owner scope (user id)", default=None)
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_status = subparsers.add_parser("status", help="Show sync status")
    p_status.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    subparsers.add_parser("sync", help="Push pending changes now")

    p_pull = subparsers.add_parser("pull", help="Download remote records into the cache")
    p_pull.add_argument(
        "type",
        nargs="?",
        help="Record type (customer, product, sale, expense, collection); default all",
    )

    p_pending = subparsers.add_parser("pending", help="List pending changes")
    p_pending.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    p_clear = subparsers.add_parser("clear-cache", help="Clear cached records")
    p_clear.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    return parser


async def _dispatch(args, settings: Settings):
    ctx = build_context(settings)
    await ctx.start(auto_sync=False)
    try:
        await COMMANDS[args.command](args, ctx)
    finally:
        await ctx.close()


def main(argv: Optional[list] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_dokan_logging(
        owner_scope=args.scope or settings.owner_scope or "default",
        level="DEBUG" if args.verbose else settings.log_level,
    )

    try:
        asyncio.run(_dispatch(args, settings))
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        print(f"✗ {e}")
        sys.exit(1)
    except DokanSyncError as e:
        logger.error(f"Command failed: {e}")
        print(f"✗ {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
