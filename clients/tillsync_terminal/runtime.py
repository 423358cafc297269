from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

from clients.tillsync_terminal.config import TerminalConfig
from clients.tillsync_terminal.external_api import ExternalApiService
from clients.tillsync_terminal.http_client import SyncApiClient
from clients.tillsync_terminal.inventory_loader import InventoryLoader
from clients.tillsync_terminal.logger import get_logger, log_event
from clients.tillsync_terminal.models import QueueHealth, TransactionRecord, new_transaction_record
from clients.tillsync_terminal.queue_store import LocalQueueStore
from clients.tillsync_terminal.sync_client import SyncClient, SyncCycleResult, SyncWorker
from clients.tillsync_terminal.worker_lifecycle import AssetWorkerLifecycle

logger = get_logger("tillsync.terminal.runtime")


class TerminalRuntime:
    """Wires the terminal components together and owns their lifecycle."""

    def __init__(
        self,
        config: TerminalConfig,
        *,
        http_client: httpx.Client | None = None,
        inventory_client: httpx.Client | None = None,
        reload_hook: Callable[[int], None] | None = None,
        load_inventory: bool = True,
    ):
        config.validate()
        self.config = config
        self.store = LocalQueueStore(config.queue_db_path, capacity=config.queue_capacity)
        self.api = SyncApiClient(config, client=http_client)
        self.sync_client = SyncClient(config, self.store, self.api)
        self.worker = SyncWorker(self.sync_client, config.sync_interval_seconds)
        self.assets = AssetWorkerLifecycle(config, self.api, self.sync_client, reload_hook=reload_hook)
        self.external_api = ExternalApiService(config, client=inventory_client)
        self.inventory = InventoryLoader(self.external_api) if load_inventory else None
        self._started = False

    def __enter__(self) -> "TerminalRuntime":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def start(self) -> None:
        if self._started:
            return
        recovered = self.store.recover_in_flight()
        self.worker.start()
        self.assets.start()
        if self.inventory is not None:
            self.inventory.start()
        self._started = True
        log_event(logger, "runtime_started", terminal_id=self.config.terminal_id, recovered_in_flight=recovered)

    def stop(self, timeout: float | None = 10.0) -> None:
        if self._started:
            self.worker.stop(timeout)
            self.assets.stop(timeout)
            self._started = False
            log_event(logger, "runtime_stopped", terminal_id=self.config.terminal_id)
        self.api.close()
        self.external_api.close()
        self.store.close()

    def record_sale(
        self,
        total: Decimal | str | int,
        payload: dict[str, Any] | None = None,
        *,
        occurred_at: datetime | None = None,
        record_id: str | None = None,
    ) -> TransactionRecord:
        record = new_transaction_record(total, payload, occurred_at=occurred_at, record_id=record_id)
        stored = self.store.enqueue(record)
        if self._started:
            self.worker.notify_online()
        return stored

    def notify_online(self) -> None:
        self.worker.notify_online()

    def resume_sync(self) -> None:
        self.worker.resume()

    def sync_now(self) -> SyncCycleResult:
        return self.sync_client.run_cycle()

    def queue_health(self) -> QueueHealth:
        return self.store.health()
