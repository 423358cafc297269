import time
from decimal import Decimal

import pytest

from clients.tillsync_terminal.errors import StorageFull
from clients.tillsync_terminal.models import SyncState
from clients.tillsync_terminal.runtime import TerminalRuntime
from clients.tillsync_terminal.worker_lifecycle import InstallState
from tests.sync_helpers import terminal_config


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.02)
    return predicate()


def test_recorded_sale_is_synced_in_background(tmp_path, client):
    config = terminal_config(tmp_path, sync_interval_seconds=30, asset_poll_interval_seconds=30)

    with TerminalRuntime(config, http_client=client) as runtime:
        record = runtime.record_sale(Decimal("12.50"), {"lines": [{"sku": "SKU-1", "qty": 1}]})

        assert record.sync_state is SyncState.PENDING
        assert _wait_for(lambda: runtime.store.get(record.id).sync_state is SyncState.SYNCED)
        assert _wait_for(lambda: runtime.assets.state is InstallState.INSTALLED_WAITING)
        assert runtime.queue_health().synced == 1


def test_sales_are_accepted_while_offline(tmp_path):
    config = terminal_config(tmp_path, base_url="http://127.0.0.1:9", timeout_seconds=1)
    runtime = TerminalRuntime(config, load_inventory=False)
    try:
        first = runtime.record_sale("3.10")
        second = runtime.record_sale("4.20")
        result = runtime.sync_now()

        assert result.halted_reason in {"network_unavailable", "server_transient"}
        assert {item.id for item in runtime.store.list_pending()} == {first.id, second.id}
        assert runtime.queue_health().stored == 2
    finally:
        runtime.stop()


def test_storage_full_is_reported_to_caller(tmp_path):
    config = terminal_config(tmp_path, queue_capacity=1)
    runtime = TerminalRuntime(config, load_inventory=False)
    try:
        runtime.record_sale("1.00")
        with pytest.raises(StorageFull):
            runtime.record_sale("2.00")
    finally:
        runtime.stop()


def test_start_recovers_interrupted_attempts(tmp_path, client):
    path = str(tmp_path / "queue.db")
    config = terminal_config(tmp_path, queue_db_path=path, sync_interval_seconds=30, asset_poll_interval_seconds=30)

    crashed = TerminalRuntime(config, http_client=client, load_inventory=False)
    record = crashed.record_sale("9.99")
    crashed.store.begin_attempt(record.id)
    crashed.stop()

    with TerminalRuntime(config, http_client=client, load_inventory=False) as runtime:
        assert _wait_for(lambda: runtime.store.get(record.id).sync_state is SyncState.SYNCED)
