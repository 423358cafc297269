from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from clients.tillsync_terminal.backoff import BackoffPolicy
from clients.tillsync_terminal.config import TerminalConfig
from clients.tillsync_terminal.errors import (
    DuplicateAccepted,
    NetworkUnavailable,
    ServerTransient,
    SyncError,
    Unauthorized,
)
from clients.tillsync_terminal.http_client import SyncApiClient
from clients.tillsync_terminal.logger import get_logger, log_event
from clients.tillsync_terminal.models import SyncState, utcnow
from clients.tillsync_terminal.queue_store import LocalQueueStore

logger = get_logger("tillsync.terminal.sync")

HALT_NETWORK = "network_unavailable"
HALT_TRANSIENT = "server_transient"
HALT_UNAUTHORIZED = "unauthorized"
HALT_STOPPED = "stopped"
HALT_BUSY = "cycle_in_progress"


class SyncBusy(RuntimeError):
    pass


@dataclass(frozen=True)
class RecordResult:
    id: str
    outcome: str
    duplicate: bool = False
    error_code: str | None = None
    needs_review: bool = False
    next_attempt_at: datetime | None = None
    halted_reason: str | None = None


@dataclass
class SyncCycleResult:
    synced: int = 0
    failed: int = 0
    skipped: int = 0
    halted_reason: str | None = None
    records: list[RecordResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "skipped": self.skipped,
            "halted_reason": self.halted_reason,
        }


def _halt_reason(exc: SyncError) -> str | None:
    if isinstance(exc, NetworkUnavailable):
        return HALT_NETWORK
    if isinstance(exc, ServerTransient):
        return HALT_TRANSIENT
    return None


class SyncClient:
    """Drains the local queue against the sync endpoint, one record at a time.

    ``_submission_gate`` is held for the whole life of an attempt, from the
    ``PENDING -> IN_FLIGHT`` transition until the outcome is written back.
    ``quiesce`` takes the same gate so callers such as asset activation never
    run while a submission is outstanding.
    """

    def __init__(
        self,
        config: TerminalConfig,
        store: LocalQueueStore,
        api: SyncApiClient,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.store = store
        self.api = api
        self.clock = clock
        self.backoff = BackoffPolicy(
            base_ms=config.backoff_base_ms,
            cap_ms=config.backoff_cap_ms,
            jitter_ratio=config.backoff_jitter_ratio,
        )
        self._cycle_lock = threading.Lock()
        self._submission_gate = threading.Lock()
        self._auth_blocked = threading.Event()

    @property
    def in_flight(self) -> bool:
        return self._submission_gate.locked()

    @property
    def auth_blocked(self) -> bool:
        return self._auth_blocked.is_set()

    def resume(self) -> None:
        if self._auth_blocked.is_set():
            log_event(logger, "sync_resumed")
        self._auth_blocked.clear()

    @contextmanager
    def quiesce(self, timeout: float) -> Iterator[None]:
        if timeout > 0:
            acquired = self._submission_gate.acquire(timeout=timeout)
        else:
            acquired = self._submission_gate.acquire(blocking=False)
        if not acquired:
            raise SyncBusy("a transaction submission is in flight")
        try:
            yield
        finally:
            self._submission_gate.release()

    def jitter_key(self, record_id: str) -> str:
        return f"{self.config.terminal_id}:{record_id}"

    def run_cycle(self, stop_event: threading.Event | None = None) -> SyncCycleResult:
        result = SyncCycleResult()
        if not self._cycle_lock.acquire(blocking=False):
            result.halted_reason = HALT_BUSY
            return result
        try:
            if self.auth_blocked:
                result.halted_reason = HALT_UNAUTHORIZED
                return result
            self.store.release_due(self.clock())
            for record in self.store.list_pending():
                if stop_event is not None and stop_event.is_set():
                    result.halted_reason = HALT_STOPPED
                    break
                if record.sync_state is not SyncState.PENDING:
                    result.skipped += 1
                    continue
                outcome = self.sync_record(record.id)
                result.records.append(outcome)
                if outcome.outcome == "synced":
                    result.synced += 1
                elif outcome.outcome == "failed":
                    result.failed += 1
                else:
                    result.skipped += 1
                if outcome.halted_reason:
                    result.halted_reason = outcome.halted_reason
                    break
        finally:
            self._cycle_lock.release()

        log_event(logger, "sync_cycle_completed", terminal_id=self.config.terminal_id, **result.to_dict())
        return result

    def sync_record(self, record_id: str) -> RecordResult:
        with self._submission_gate:
            record = self.store.begin_attempt(record_id)
            if record is None:
                return RecordResult(id=record_id, outcome="skipped")
            try:
                if self.config.dedup_check_enabled and record.attempts > 1:
                    if self.api.exists_remotely(record.id):
                        self.store.mark_synced(record.id)
                        log_event(logger, "sync_dedup_hit", id=record.id, attempts=record.attempts)
                        return RecordResult(id=record.id, outcome="synced", duplicate=True)
                receipt = self.api.submit(record)
            except DuplicateAccepted:
                self.store.mark_synced(record.id)
                log_event(logger, "sync_duplicate_accepted", id=record.id, attempts=record.attempts)
                return RecordResult(id=record.id, outcome="synced", duplicate=True)
            except Unauthorized as exc:
                self.store.mark_failed(
                    record.id,
                    error_code=exc.code,
                    error_message=exc.message,
                    next_attempt_at=self.clock(),
                )
                self._auth_blocked.set()
                log_event(
                    logger,
                    "sync_unauthorized",
                    level=logging.ERROR,
                    id=record.id,
                    status_code=exc.status_code,
                    trace_id=exc.trace_id,
                )
                return RecordResult(
                    id=record.id,
                    outcome="failed",
                    error_code=exc.code,
                    halted_reason=HALT_UNAUTHORIZED,
                )
            except SyncError as exc:
                return self._record_failure(record.id, record.attempts, exc)
            except Exception as exc:
                self.store.mark_failed(
                    record.id,
                    error_code="UNEXPECTED_ERROR",
                    error_message=str(exc),
                    next_attempt_at=self.clock() + self.backoff.delay(record.attempts, self.jitter_key(record.id)),
                )
                raise

            self.store.mark_synced(record.id, receipt.synced_at)
            log_event(logger, "sync_accepted", id=record.id, attempts=record.attempts, duplicate=receipt.duplicate)
            return RecordResult(id=record.id, outcome="synced", duplicate=receipt.duplicate)

    def _record_failure(self, record_id: str, attempts: int, exc: SyncError) -> RecordResult:
        ceiling = self.config.retry_attempt_ceiling if exc.retryable else self.config.rejected_attempt_ceiling
        needs_review = attempts >= ceiling
        next_attempt_at = None
        if not needs_review:
            next_attempt_at = self.clock() + self.backoff.delay(attempts, self.jitter_key(record_id))
        self.store.mark_failed(
            record_id,
            error_code=exc.code,
            error_message=exc.message,
            next_attempt_at=next_attempt_at,
            needs_review=needs_review,
        )
        log_event(
            logger,
            "sync_failed",
            level=logging.ERROR if needs_review else logging.WARNING,
            id=record_id,
            attempts=attempts,
            code=exc.code,
            status_code=exc.status_code,
            retryable=exc.retryable,
            needs_review=needs_review,
            next_attempt_at=next_attempt_at,
            trace_id=exc.trace_id,
        )
        return RecordResult(
            id=record_id,
            outcome="failed",
            error_code=exc.code,
            needs_review=needs_review,
            next_attempt_at=next_attempt_at,
            halted_reason=_halt_reason(exc),
        )


class SyncWorker:
    """Runs sync cycles on a daemon thread."""

    def __init__(self, client: SyncClient, interval_seconds: float):
        self.client = client
        self.interval_seconds = interval_seconds
        self.last_result: SyncCycleResult | None = None
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="tillsync-sync", daemon=True)
        self._thread.start()

    def notify_online(self) -> None:
        self._wake.set()

    def resume(self) -> None:
        self.client.resume()
        self._wake.set()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            if not self.client.auth_blocked:
                try:
                    self.last_result = self.client.run_cycle(self._stop)
                except Exception as exc:
                    log_event(logger, "sync_cycle_error", level=logging.ERROR, error=repr(exc))
            self._wake.wait(self.interval_seconds)
            self._wake.clear()
