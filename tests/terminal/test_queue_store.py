import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from clients.tillsync_terminal.errors import DuplicateRecord, StorageFull
from clients.tillsync_terminal.models import SyncState, TransactionRecord, new_transaction_record
from clients.tillsync_terminal.queue_store import LocalQueueStore

T0 = datetime(2026, 10, 1, 12, 0, 0)


def _record(record_id, minutes=0, total="12.50"):
    return new_transaction_record(total, {"lines": []}, occurred_at=T0 + timedelta(minutes=minutes), record_id=record_id)


@pytest.fixture()
def store():
    queue_store = LocalQueueStore(":memory:", capacity=5, page_size=2)
    yield queue_store
    queue_store.close()


def test_enqueue_returns_pending_record_with_exact_total(store):
    stored = store.enqueue(_record("t-1"))

    assert stored.sync_state is SyncState.PENDING
    assert stored.attempts == 0
    assert store.get("t-1").total == Decimal("12.50")
    assert [record.id for record in store.list_pending()] == ["t-1"]


def test_float_totals_are_refused():
    with pytest.raises(TypeError):
        new_transaction_record(12.5)


def test_list_pending_orders_by_occurrence_then_id(store):
    store.enqueue(_record("t-c", minutes=5))
    store.enqueue(_record("t-b", minutes=1))
    store.enqueue(_record("t-a", minutes=1))
    store.enqueue(_record("t-z", minutes=0))

    assert [record.id for record in store.list_pending()] == ["t-z", "t-a", "t-b", "t-c"]


def test_enqueue_normalises_caller_built_records(store):
    plus_five = timezone(timedelta(hours=5))
    store.enqueue(TransactionRecord(id="a", occurred_at=datetime(2026, 10, 1, 12, 0, tzinfo=plus_five), total="4.5"))
    store.enqueue(TransactionRecord(id="b", occurred_at=datetime(2026, 10, 1, 8, 0), total=Decimal("3")))

    assert [record.id for record in store.list_pending()] == ["a", "b"]
    stored = store.get("a")
    assert stored.occurred_at == datetime(2026, 10, 1, 7, 0)
    assert stored.total == Decimal("4.50")
    assert stored.to_sync_body()["date"] == "2026-10-01T07:00:00+00:00"
    assert store.get("b").to_sync_body()["total"] == "3.00"


def test_list_pending_is_restartable_across_pages(store):
    for index in range(5):
        store.enqueue(_record(f"t-{index}", minutes=index))

    pending = store.list_pending()

    assert [record.id for record in pending] == [f"t-{index}" for index in range(5)]
    assert [record.id for record in pending] == [f"t-{index}" for index in range(5)]


def test_list_pending_tolerates_mutation_while_iterating(store):
    for index in range(5):
        store.enqueue(_record(f"t-{index}", minutes=index))

    seen = []
    for record in store.list_pending():
        seen.append(record.id)
        if record.id == "t-0":
            store.begin_attempt("t-3")
            store.mark_synced("t-3")

    assert seen == ["t-0", "t-1", "t-2", "t-4"]


def test_duplicate_enqueue_is_refused(store):
    store.enqueue(_record("t-1"))

    with pytest.raises(DuplicateRecord):
        store.enqueue(_record("t-1", total="1.00"))

    assert store.get("t-1").total == Decimal("12.50")


def test_storage_full_until_synced_records_are_purged(store):
    for index in range(5):
        store.enqueue(_record(f"t-{index}", minutes=index))
    store.begin_attempt("t-0")
    store.mark_synced("t-0")

    with pytest.raises(StorageFull):
        store.enqueue(_record("t-5", minutes=6))
    assert store.health().storage_full is True
    assert store.get("t-0") is not None

    assert store.purge_synced() == 1
    store.enqueue(_record("t-5", minutes=6))
    assert store.health().stored == 5


def test_purge_synced_respects_cutoff(store):
    store.enqueue(_record("t-1"))
    store.enqueue(_record("t-2", minutes=1))
    store.mark_synced("t-1", synced_at=T0)
    store.mark_synced("t-2", synced_at=T0 + timedelta(days=2))

    assert store.purge_synced(before=T0 + timedelta(days=1)) == 1
    assert store.get("t-1") is None
    assert store.get("t-2") is not None


def test_begin_attempt_is_compare_and_set(store):
    store.enqueue(_record("t-1"))

    first = store.begin_attempt("t-1")
    second = store.begin_attempt("t-1")

    assert first.sync_state is SyncState.IN_FLIGHT
    assert first.attempts == 1
    assert second is None


def test_concurrent_begin_attempt_has_single_winner(store):
    store.enqueue(_record("t-1"))
    results = []
    barrier = threading.Barrier(6)

    def worker():
        barrier.wait()
        results.append(store.begin_attempt("t-1"))

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len([result for result in results if result is not None]) == 1
    assert store.get("t-1").attempts == 1


def test_mark_synced_is_idempotent_and_final(store):
    store.enqueue(_record("t-1"))
    store.begin_attempt("t-1")

    assert store.mark_synced("t-1") is True
    synced_at = store.get("t-1").synced_at
    assert store.mark_synced("t-1") is False
    assert store.mark_failed("t-1", error_code="LATE") is False

    record = store.get("t-1")
    assert record.sync_state is SyncState.SYNCED
    assert record.synced_at == synced_at
    assert record.last_error_code is None
    assert list(store.list_pending()) == []


def test_mark_failed_is_idempotent(store):
    store.enqueue(_record("t-1"))
    store.begin_attempt("t-1")
    retry_at = T0 + timedelta(minutes=1)

    assert store.mark_failed("t-1", error_code="NETWORK_ERROR", next_attempt_at=retry_at) is True
    assert store.mark_failed("t-1", error_code="OTHER", needs_review=True) is False

    record = store.get("t-1")
    assert record.sync_state is SyncState.FAILED
    assert record.last_error_code == "NETWORK_ERROR"
    assert record.next_attempt_at == retry_at
    assert record.needs_review is False


def test_unknown_id_raises_key_error(store):
    with pytest.raises(KeyError):
        store.mark_synced("missing")


def test_release_due_only_moves_due_records(store):
    for record_id, minutes in (("t-due", 0), ("t-later", 1), ("t-review", 2)):
        store.enqueue(_record(record_id, minutes=minutes))
        store.begin_attempt(record_id)
    store.mark_failed("t-due", error_code="E", next_attempt_at=T0)
    store.mark_failed("t-later", error_code="E", next_attempt_at=T0 + timedelta(hours=1))
    store.mark_failed("t-review", error_code="E", needs_review=True)

    assert store.release_due(T0 + timedelta(seconds=1)) == 1

    assert store.get("t-due").sync_state is SyncState.PENDING
    assert store.get("t-later").sync_state is SyncState.FAILED
    assert store.get("t-review").sync_state is SyncState.FAILED
    assert [record.id for record in store.list_pending()] == ["t-due", "t-later", "t-review"]


def test_recover_in_flight_makes_records_retry_eligible(store):
    store.enqueue(_record("t-1"))
    store.begin_attempt("t-1")

    assert store.recover_in_flight() == 1

    record = store.get("t-1")
    assert record.sync_state is SyncState.FAILED
    assert record.last_error_code == "INTERRUPTED"
    assert store.release_due(T0) == 1
    assert store.get("t-1").sync_state is SyncState.PENDING


def test_requeue_clears_review_flag_and_keeps_attempts(store):
    store.enqueue(_record("t-1"))
    store.begin_attempt("t-1")
    store.mark_failed("t-1", error_code="VALIDATION_ERROR", needs_review=True)
    assert [record.id for record in store.list_needs_review()] == ["t-1"]

    assert store.requeue("t-1") is True

    record = store.get("t-1")
    assert record.sync_state is SyncState.PENDING
    assert record.needs_review is False
    assert record.attempts == 1
    assert store.list_needs_review() == []


def test_requeue_refuses_synced_records(store):
    store.enqueue(_record("t-1"))
    store.mark_synced("t-1")
    assert store.requeue("t-1") is False


def test_health_reports_counts(store):
    for index in range(4):
        store.enqueue(_record(f"t-{index}", minutes=index))
    store.begin_attempt("t-0")
    store.mark_synced("t-0")
    store.begin_attempt("t-1")
    store.mark_failed("t-1", error_code="E", needs_review=True)
    store.begin_attempt("t-2")

    health = store.health()

    assert health.capacity == 5
    assert health.stored == 4
    assert health.synced == 1
    assert health.failed == 1
    assert health.in_flight == 1
    assert health.pending == 1
    assert health.needs_review == 1
    assert health.oldest_pending_at == T0 + timedelta(minutes=1)
    assert health.to_dict()["storage_full"] is False


def test_records_survive_reopen(tmp_path):
    path = str(tmp_path / "queue" / "till.db")
    first = LocalQueueStore(path, capacity=10)
    first.enqueue(_record("t-1"))
    first.begin_attempt("t-1")
    first.close()

    reopened = LocalQueueStore(path, capacity=10)
    try:
        assert reopened.recover_in_flight() == 1
        record = reopened.get("t-1")
        assert record.total == Decimal("12.50")
        assert record.attempts == 1
        assert record.payload == {"lines": []}
    finally:
        reopened.close()
