from __future__ import annotations

import argparse
import json
import sys
import threading
from dataclasses import asdict
from datetime import datetime

from clients.tillsync_terminal.config import ConfigError, TerminalConfig, load_config
from clients.tillsync_terminal.http_client import SyncApiClient
from clients.tillsync_terminal.models import TransactionRecord, to_naive_utc
from clients.tillsync_terminal.queue_store import LocalQueueStore
from clients.tillsync_terminal.runtime import TerminalRuntime
from clients.tillsync_terminal.sync_client import SyncClient


def _open_store(config: TerminalConfig) -> LocalQueueStore:
    return LocalQueueStore(config.queue_db_path, capacity=config.queue_capacity)


def _record_to_dict(record: TransactionRecord) -> dict:
    data = asdict(record)
    data["sync_state"] = record.sync_state.value
    return data


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_status(config: TerminalConfig, args: argparse.Namespace) -> int:
    store = _open_store(config)
    try:
        _print_json(store.health().to_dict())
    finally:
        store.close()
    return 0


def cmd_review(config: TerminalConfig, args: argparse.Namespace) -> int:
    store = _open_store(config)
    try:
        _print_json([_record_to_dict(record) for record in store.list_needs_review()])
    finally:
        store.close()
    return 0


def cmd_requeue(config: TerminalConfig, args: argparse.Namespace) -> int:
    store = _open_store(config)
    try:
        try:
            changed = store.requeue(args.id)
        except KeyError:
            print(f"Unknown transaction id: {args.id}", file=sys.stderr)
            return 1
    finally:
        store.close()
    _print_json({"id": args.id, "requeued": changed})
    return 0 if changed else 1


def cmd_purge_synced(config: TerminalConfig, args: argparse.Namespace) -> int:
    before = to_naive_utc(datetime.fromisoformat(args.before)) if args.before else None
    store = _open_store(config)
    try:
        _print_json({"purged": store.purge_synced(before)})
    finally:
        store.close()
    return 0


def cmd_sync_once(config: TerminalConfig, args: argparse.Namespace) -> int:
    store = _open_store(config)
    api = SyncApiClient(config)
    try:
        store.recover_in_flight()
        result = SyncClient(config, store, api).run_cycle()
        _print_json(result.to_dict())
    finally:
        api.close()
        store.close()
    return 0 if result.halted_reason is None else 1


def cmd_run(config: TerminalConfig, args: argparse.Namespace) -> int:
    stop = threading.Event()
    with TerminalRuntime(config):
        try:
            while not stop.wait(1.0):
                pass
        except KeyboardInterrupt:
            stop.set()
    return 0


COMMANDS = {
    "run": cmd_run,
    "status": cmd_status,
    "sync-once": cmd_sync_once,
    "review": cmd_review,
    "requeue": cmd_requeue,
    "purge-synced": cmd_purge_synced,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tillsync-terminal", description="TillSync terminal runtime")
    parser.add_argument("--env-file", default=None, help="Optional .env file with TILLSYNC_* settings")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run the sync worker and asset lifecycle until interrupted")
    sub.add_parser("status", help="Print local queue health as JSON")
    sub.add_parser("sync-once", help="Run a single sync cycle and exit")
    sub.add_parser("review", help="List transactions that need manual intervention")
    requeue = sub.add_parser("requeue", help="Make a failed transaction eligible for sync again")
    requeue.add_argument("id")
    purge = sub.add_parser("purge-synced", help="Delete synced transactions from the local queue")
    purge.add_argument("--before", default=None, help="Only purge records synced before this ISO timestamp")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.env_file)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    return COMMANDS[args.command](config, args)


if __name__ == "__main__":
    raise SystemExit(main())
