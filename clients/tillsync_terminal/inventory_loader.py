from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from clients.tillsync_terminal.errors import SyncError
from clients.tillsync_terminal.external_api import ExternalApiService
from clients.tillsync_terminal.logger import get_logger, log_event

logger = get_logger("tillsync.terminal.inventory")


@dataclass
class CatalogSnapshot:
    inventory: list[dict[str, Any]] = field(default_factory=list)
    services: list[dict[str, Any]] = field(default_factory=list)
    categories: list[dict[str, Any]] = field(default_factory=list)


class InventoryLoader:
    """Loads the catalog once at startup on its own thread.

    Errors end up in ``error`` and the log; they never reach the caller.
    """

    def __init__(self, service: ExternalApiService):
        self.service = service
        self.snapshot: CatalogSnapshot | None = None
        self.error: str | None = None
        self._done = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._load, name="tillsync-inventory", daemon=True)
        self._thread.start()

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    def _load(self) -> None:
        try:
            if not self.service.configured:
                self.error = "inventory API not configured"
                log_event(logger, "inventory_load_skipped", level=logging.WARNING, reason=self.error)
                return
            snapshot = CatalogSnapshot(
                inventory=self.service.inventory_items(),
                services=self.service.services(),
                categories=self.service.categories(),
            )
            self.snapshot = snapshot
            log_event(
                logger,
                "inventory_loaded",
                inventory=len(snapshot.inventory),
                services=len(snapshot.services),
                categories=len(snapshot.categories),
            )
        except (SyncError, ValueError, TypeError) as exc:
            self.error = str(exc)
            log_event(logger, "inventory_load_failed", level=logging.ERROR, error=self.error)
        finally:
            self._done.set()
