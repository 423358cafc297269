import json
import threading
from datetime import datetime, timedelta

import httpx
import pytest

from clients.tillsync_terminal.http_client import SyncApiClient
from clients.tillsync_terminal.models import SyncState, new_transaction_record
from clients.tillsync_terminal.queue_store import LocalQueueStore
from clients.tillsync_terminal.sync_client import (
    HALT_NETWORK,
    HALT_TRANSIENT,
    HALT_UNAUTHORIZED,
    SyncBusy,
    SyncClient,
    SyncWorker,
)
from tests.sync_helpers import terminal_config

T0 = datetime(2026, 10, 1, 12, 0, 0)


class FakeSyncServer:
    """Scripted stand-in for the sync endpoint."""

    def __init__(self):
        self.ledger = {}
        self.submitted = []
        self.exists_checks = []
        self.failures = []
        self.lock = threading.Lock()

    def fail_next(self, *responses):
        self.failures.extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self.lock:
            if request.method == "GET":
                record_id = request.url.params["id"]
                self.exists_checks.append(record_id)
                return httpx.Response(200, json={"exists": record_id in self.ledger, "transactionId": record_id})

            body = json.loads(request.read())
            self.submitted.append(body["id"])
            if self.failures:
                failure = self.failures.pop(0)
                if isinstance(failure, Exception):
                    raise failure
                return failure
            duplicate = body["id"] in self.ledger
            self.ledger.setdefault(body["id"], body)
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "accepted": True,
                    "duplicate": duplicate,
                    "id": body["id"],
                    "syncedAt": "2026-10-01T12:00:00Z",
                    "message": "ok",
                },
            )


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture()
def server():
    return FakeSyncServer()


@pytest.fixture()
def clock():
    return Clock(T0 + timedelta(hours=1))


@pytest.fixture()
def make_client(tmp_path, server, clock):
    created = []

    def factory(**overrides):
        config = terminal_config(tmp_path, **overrides)
        store = LocalQueueStore(":memory:", capacity=config.queue_capacity)
        http = httpx.Client(base_url=config.base_url, transport=httpx.MockTransport(server))
        client = SyncClient(config, store, SyncApiClient(config, client=http), clock=clock)
        created.append(store)
        return client

    yield factory
    for store in created:
        store.close()


def _sale(record_id, minutes=0, total="12.50"):
    return new_transaction_record(total, {"lines": []}, occurred_at=T0 + timedelta(minutes=minutes), record_id=record_id)


def _timeout():
    return httpx.ReadTimeout("timed out")


def test_offline_sale_syncs_once_network_returns(make_client, server):
    client = make_client()
    server.fail_next(httpx.ConnectError("offline"))
    client.store.enqueue(_sale("t-1", total="12.50"))
    assert [record.id for record in client.store.list_pending()] == ["t-1"]

    offline = client.run_cycle()
    assert offline.halted_reason == HALT_NETWORK
    assert client.store.get("t-1").sync_state is SyncState.FAILED

    client.clock.advance(minutes=5)
    online = client.run_cycle()

    assert online.synced == 1
    assert online.halted_reason is None
    record = client.store.get("t-1")
    assert record.sync_state is SyncState.SYNCED
    assert record.synced_at == datetime(2026, 10, 1, 12, 0, 0)
    assert list(client.store.list_pending()) == []
    assert server.ledger["t-1"]["total"] == "12.50"


def test_records_are_attempted_oldest_first(make_client, server):
    client = make_client()
    client.store.enqueue(_sale("t-b", minutes=2))
    client.store.enqueue(_sale("t-a", minutes=1))

    client.run_cycle()

    assert server.submitted == ["t-a", "t-b"]


def test_three_timeouts_leave_record_failed_with_growing_delay(make_client, server, clock):
    client = make_client(backoff_jitter_ratio=0.0)
    client.store.enqueue(_sale("t-1"))
    server.fail_next(_timeout(), _timeout(), _timeout())

    delays = []
    for _ in range(3):
        result = client.run_cycle()
        assert result.halted_reason == HALT_TRANSIENT
        record = client.store.get("t-1")
        delays.append(record.next_attempt_at - clock.now)
        clock.now = record.next_attempt_at

    record = client.store.get("t-1")
    assert record.sync_state is SyncState.FAILED
    assert record.attempts == 3
    assert record.last_error_code == "TIMEOUT_ERROR"
    assert delays == sorted(delays)
    assert delays[0] > timedelta(0)


def test_transient_failure_halts_cycle_and_leaves_rest_untouched(make_client, server):
    client = make_client()
    client.store.enqueue(_sale("t-1", minutes=1))
    client.store.enqueue(_sale("t-2", minutes=2))
    server.fail_next(httpx.Response(503, json={"code": "LEDGER_UNAVAILABLE", "message": "down"}))

    result = client.run_cycle()

    assert result.failed == 1
    assert result.halted_reason == HALT_TRANSIENT
    untouched = client.store.get("t-2")
    assert untouched.sync_state is SyncState.PENDING
    assert untouched.attempts == 0


def test_backing_off_record_does_not_block_newer_sales(make_client, server):
    client = make_client()
    client.store.enqueue(_sale("t-1", minutes=1))
    server.fail_next(httpx.Response(422, json={"code": "VALIDATION_ERROR", "message": "bad"}))
    client.run_cycle()

    client.store.enqueue(_sale("t-2", minutes=2))
    result = client.run_cycle()

    assert result.synced == 1
    assert result.skipped == 1
    assert client.store.get("t-1").sync_state is SyncState.FAILED
    assert client.store.get("t-2").sync_state is SyncState.SYNCED


def test_rejected_record_needs_review_at_ceiling(make_client, server, clock):
    client = make_client(rejected_attempt_ceiling=2)
    client.store.enqueue(_sale("t-1"))
    rejection = {"code": "VALIDATION_ERROR", "message": "bad total"}
    server.fail_next(httpx.Response(422, json=rejection), httpx.Response(422, json=rejection))

    first = client.run_cycle()
    assert first.records[0].needs_review is False
    clock.now = client.store.get("t-1").next_attempt_at

    second = client.run_cycle()

    assert second.records[0].needs_review is True
    record = client.store.get("t-1")
    assert record.needs_review is True
    assert record.next_attempt_at is None
    assert [item.id for item in client.store.list_needs_review()] == ["t-1"]

    clock.advance(days=1)
    third = client.run_cycle()
    assert third.synced == 0
    assert server.submitted.count("t-1") == 2


def test_server_lock_timeout_is_retried_without_review(make_client, server, clock):
    client = make_client(rejected_attempt_ceiling=2)
    client.store.enqueue(_sale("t-1"))
    lock_timeout = {"code": "LOCK_TIMEOUT", "message": "Lock wait timeout"}
    server.fail_next(*(httpx.Response(409, json=lock_timeout) for _ in range(3)))

    for _ in range(3):
        result = client.run_cycle()
        assert result.halted_reason == HALT_TRANSIENT
        clock.advance(hours=1)

    record = client.store.get("t-1")
    assert record.attempts == 3
    assert record.needs_review is False
    assert record.last_error_code == "LOCK_TIMEOUT"

    assert client.run_cycle().synced == 1
    assert client.store.get("t-1").sync_state is SyncState.SYNCED


def test_retryable_failures_need_review_only_at_retry_ceiling(make_client, server, clock):
    client = make_client(retry_attempt_ceiling=2, rejected_attempt_ceiling=1)
    client.store.enqueue(_sale("t-1"))
    server.fail_next(_timeout(), _timeout())

    client.run_cycle()
    assert client.store.get("t-1").needs_review is False
    clock.now = client.store.get("t-1").next_attempt_at
    client.run_cycle()

    assert client.store.get("t-1").needs_review is True


def test_dedup_check_skips_resend_when_server_has_record(make_client, server, clock):
    client = make_client()
    client.store.enqueue(_sale("t-1"))
    server.ledger["t-1"] = {"id": "t-1"}
    server.fail_next(_timeout())

    client.run_cycle()
    clock.now = client.store.get("t-1").next_attempt_at
    result = client.run_cycle()

    assert result.records[0].duplicate is True
    assert client.store.get("t-1").sync_state is SyncState.SYNCED
    assert server.exists_checks == ["t-1"]
    assert server.submitted == ["t-1"]


def test_first_attempt_skips_dedup_check(make_client, server):
    client = make_client()
    client.store.enqueue(_sale("t-1"))

    client.run_cycle()

    assert server.exists_checks == []


def test_dedup_check_can_be_disabled(make_client, server, clock):
    client = make_client(dedup_check_enabled=False)
    client.store.enqueue(_sale("t-1"))
    server.fail_next(_timeout())

    client.run_cycle()
    clock.now = client.store.get("t-1").next_attempt_at
    client.run_cycle()

    assert server.exists_checks == []
    assert server.submitted == ["t-1", "t-1"]
    assert client.store.get("t-1").sync_state is SyncState.SYNCED


def test_already_synced_conflict_counts_as_success(make_client, server):
    client = make_client()
    client.store.enqueue(_sale("t-1"))
    server.fail_next(httpx.Response(409, json={"code": "TRANSACTION_ALREADY_SYNCED", "message": "dup"}))

    result = client.run_cycle()

    assert result.synced == 1
    assert client.store.get("t-1").sync_state is SyncState.SYNCED


def test_unauthorized_pauses_until_resume(make_client, server):
    client = make_client()
    client.store.enqueue(_sale("t-1"))
    server.fail_next(httpx.Response(401, json={"code": "UNAUTHORIZED", "message": "Unauthorized"}))

    result = client.run_cycle()

    assert result.halted_reason == HALT_UNAUTHORIZED
    assert client.auth_blocked is True
    assert client.store.get("t-1").sync_state is SyncState.FAILED
    assert client.run_cycle().halted_reason == HALT_UNAUTHORIZED
    assert server.submitted == ["t-1"]

    client.resume()
    result = client.run_cycle()

    assert result.synced == 1
    assert client.store.get("t-1").sync_state is SyncState.SYNCED


def test_synced_record_is_never_resent(make_client, server):
    client = make_client()
    client.store.enqueue(_sale("t-1"))
    client.run_cycle()
    client.run_cycle()

    assert server.submitted == ["t-1"]


def test_stop_event_cancels_between_records(make_client, server):
    client = make_client()
    client.store.enqueue(_sale("t-1"))
    stop = threading.Event()
    stop.set()

    result = client.run_cycle(stop)

    assert result.halted_reason == "stopped"
    assert server.submitted == []


def test_quiesce_raises_while_submission_in_flight(make_client):
    client = make_client()
    client._submission_gate.acquire()
    try:
        assert client.in_flight is True
        with pytest.raises(SyncBusy):
            with client.quiesce(0.05):
                pass
    finally:
        client._submission_gate.release()

    with client.quiesce(0.05):
        assert client.in_flight is True
    assert client.in_flight is False


def test_worker_syncs_on_notify(make_client, server):
    client = make_client(sync_interval_seconds=30)
    worker = SyncWorker(client, interval_seconds=30)
    worker.start()
    try:
        client.store.enqueue(_sale("t-1"))
        worker.notify_online()
        deadline = datetime.now() + timedelta(seconds=5)
        while client.store.get("t-1").sync_state is not SyncState.SYNCED and datetime.now() < deadline:
            threading.Event().wait(0.02)
    finally:
        worker.stop(timeout=5)

    assert client.store.get("t-1").sync_state is SyncState.SYNCED
    assert worker.running is False
