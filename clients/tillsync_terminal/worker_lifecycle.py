"""Cached asset install/update lifecycle for a terminal.

A new asset version moves ``NONE -> INSTALLING -> INSTALLED_WAITING`` on its
own, but only becomes ``ACTIVE`` when someone asks for it through
``request_activation``. Activation waits on the sync client's submission gate
so an in-flight transaction is never cut off by a reload.

Commands come in on ``commands`` and notifications go out on ``events``; both
are plain ``queue.Queue`` objects so a UI thread can consume them directly.
"""

from __future__ import annotations

import hashlib
import logging
import os
import queue
import shutil
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from clients.tillsync_terminal.config import TerminalConfig
from clients.tillsync_terminal.errors import SyncError
from clients.tillsync_terminal.http_client import SyncApiClient
from clients.tillsync_terminal.logger import get_logger, log_event
from clients.tillsync_terminal.sync_client import SyncBusy, SyncClient

logger = get_logger("tillsync.terminal.assets")

ACTIVE_POINTER = "ACTIVE"
COMMAND_ACTIVATE = "activate"

EVENT_UPDATE_AVAILABLE = "update_available"
EVENT_ACTIVATED = "activated"
EVENT_ACTIVATION_DEFERRED = "activation_deferred"
EVENT_INSTALL_FAILED = "install_failed"


class InstallState(str, Enum):
    NONE = "NONE"
    INSTALLING = "INSTALLING"
    INSTALLED_WAITING = "INSTALLED_WAITING"
    ACTIVE = "ACTIVE"


@dataclass(frozen=True)
class AssetVersion:
    version: int
    install_state: InstallState


@dataclass(frozen=True)
class LifecycleEvent:
    kind: str
    version: int | None = None
    details: dict[str, Any] = field(default_factory=dict)


class AssetInstallError(Exception):
    pass


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class AssetWorkerLifecycle:
    def __init__(
        self,
        config: TerminalConfig,
        api: SyncApiClient,
        sync_client: SyncClient,
        *,
        reload_hook: Callable[[int], None] | None = None,
    ):
        self.config = config
        self.api = api
        self.sync_client = sync_client
        self.reload_hook = reload_hook
        self.cache_dir = Path(config.asset_cache_dir)
        self.commands: queue.Queue[str] = queue.Queue()
        self.events: queue.Queue[LifecycleEvent] = queue.Queue()

        self._lock = threading.RLock()
        self._etag: str | None = None
        self._active_version = self._read_pointer()
        self._current: AssetVersion | None = (
            AssetVersion(self._active_version, InstallState.ACTIVE) if self._active_version is not None else None
        )
        self._activation_requested = False
        self._reloaded: set[int] = set()
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def active_version(self) -> int | None:
        return self._active_version

    @property
    def current(self) -> AssetVersion | None:
        return self._current

    @property
    def state(self) -> InstallState:
        return self._current.install_state if self._current else InstallState.NONE

    def active_dir(self) -> Path | None:
        if self._active_version is None:
            return None
        return self.cache_dir / str(self._active_version)

    def _read_pointer(self) -> int | None:
        pointer = self.cache_dir / ACTIVE_POINTER
        try:
            return int(pointer.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def _write_pointer(self, version: int) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        pointer = self.cache_dir / ACTIVE_POINTER
        tmp = self.cache_dir / f".{ACTIVE_POINTER}.tmp"
        tmp.write_text(str(version), encoding="utf-8")
        os.replace(tmp, pointer)

    def _emit(self, kind: str, version: int | None = None, **details: Any) -> None:
        self.events.put(LifecycleEvent(kind=kind, version=version, details=details))
        log_event(logger, f"asset_{kind}", version=version, **details)

    def check_for_update(self) -> AssetVersion | None:
        """Fetch the manifest and stage a newer version if there is one."""
        with self._lock:
            fetch = self.api.fetch_manifest(self._etag)
            if fetch.not_modified or fetch.manifest is None:
                return None
            try:
                version = int(fetch.manifest["version"])
                assets = list(fetch.manifest.get("assets") or [])
            except (KeyError, TypeError, ValueError):
                log_event(logger, "asset_manifest_invalid", level=logging.WARNING)
                return None

            known = max(self._active_version or 0, self._current.version if self._current else 0)
            if version <= known:
                self._etag = fetch.etag
                return None

            staged = self._install(version, assets)
            if staged is not None:
                self._etag = fetch.etag
            return staged

    def _install(self, version: int, assets: list[dict[str, Any]]) -> AssetVersion | None:
        previous = self._current
        self._current = AssetVersion(version, InstallState.INSTALLING)
        staging = self.cache_dir / f".staging-{version}"
        target = self.cache_dir / str(version)
        try:
            shutil.rmtree(staging, ignore_errors=True)
            staging.mkdir(parents=True)
            for asset in assets:
                self._download(staging, asset)
            shutil.rmtree(target, ignore_errors=True)
            os.replace(staging, target)
        except (SyncError, AssetInstallError, OSError, KeyError, TypeError) as exc:
            shutil.rmtree(staging, ignore_errors=True)
            self._current = previous
            self._emit(EVENT_INSTALL_FAILED, version, error=repr(exc))
            return None

        self._current = AssetVersion(version, InstallState.INSTALLED_WAITING)
        self._emit(EVENT_UPDATE_AVAILABLE, version, assets=len(assets))
        return self._current

    def _download(self, staging: Path, asset: dict[str, Any]) -> None:
        relative = str(asset["path"])
        destination = (staging / relative).resolve()
        if staging.resolve() not in destination.parents:
            raise AssetInstallError(f"asset path escapes cache: {relative}")
        data = self.api.download_asset(relative)
        if _sha256(data) != asset["sha256"]:
            raise AssetInstallError(f"checksum mismatch for {relative}")
        if "size" in asset and len(data) != int(asset["size"]):
            raise AssetInstallError(f"size mismatch for {relative}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)

    def request_activation(self) -> None:
        self.commands.put(COMMAND_ACTIVATE)
        self._wake.set()

    def tick(self) -> None:
        """Process queued commands and retry a deferred activation."""
        while True:
            try:
                command = self.commands.get_nowait()
            except queue.Empty:
                break
            if command == COMMAND_ACTIVATE:
                self._activation_requested = True
        if self._activation_requested:
            self._activate()

    def _activate(self) -> None:
        with self._lock:
            staged = self._current
            if staged is None or staged.install_state is not InstallState.INSTALLED_WAITING:
                self._activation_requested = False
                return
            try:
                # The gate stays held through the reload so no submission straddles the swap.
                with self.sync_client.quiesce(self.config.activation_wait_seconds):
                    self._write_pointer(staged.version)
                    self._active_version = staged.version
                    self._current = AssetVersion(staged.version, InstallState.ACTIVE)
                    self._activation_requested = False
                    self._prune_versions(keep={staged.version})
                    self._emit(EVENT_ACTIVATED, staged.version)
                    if staged.version not in self._reloaded:
                        self._reloaded.add(staged.version)
                        if self.reload_hook is not None:
                            self.reload_hook(staged.version)
            except SyncBusy:
                self._emit(EVENT_ACTIVATION_DEFERRED, staged.version, reason="submission_in_flight")

    def _prune_versions(self, keep: set[int]) -> None:
        if not self.cache_dir.is_dir():
            return
        for entry in self.cache_dir.iterdir():
            if entry.is_dir() and entry.name.isdigit() and int(entry.name) not in keep:
                shutil.rmtree(entry, ignore_errors=True)
                log_event(logger, "asset_version_pruned", version=int(entry.name))

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="tillsync-assets", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.check_for_update()
            except SyncError as exc:
                log_event(logger, "asset_check_failed", level=logging.WARNING, code=exc.code, error=exc.message)
            self.tick()
            self._wake.wait(self.config.asset_poll_interval_seconds)
            self._wake.clear()
