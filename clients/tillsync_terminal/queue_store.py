"""Durable terminal-local queue of sales awaiting sync.

Rows live in SQLite through SQLAlchemy. Access is serialized with a
re-entrant lock and every operation uses its own short session, so the sale
path (``enqueue``) and the background sync client can share one store.
A row leaves the table only through ``purge_synced``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    and_,
    create_engine,
    delete,
    event,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from clients.tillsync_terminal.errors import DuplicateRecord, StorageFull
from clients.tillsync_terminal.logger import get_logger, log_event
from clients.tillsync_terminal.models import (
    QueueHealth,
    SyncState,
    TransactionRecord,
    to_amount,
    to_naive_utc,
    utcnow,
)

logger = get_logger("tillsync.terminal.queue")

_RETRYABLE_STATES = (SyncState.PENDING.value, SyncState.FAILED.value)


class DecimalText(TypeDecorator):
    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(Decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class QueueBase(DeclarativeBase):
    pass


class QueuedTransaction(QueueBase):
    __tablename__ = "queued_transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    total: Mapped[Decimal] = mapped_column(DecimalText(), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    sync_state: Mapped[str] = mapped_column(String(20), nullable=False, default=SyncState.PENDING.value)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


Index(
    "ix_queued_transactions_state_order",
    QueuedTransaction.sync_state,
    QueuedTransaction.occurred_at,
    QueuedTransaction.id,
)


def _build_engine(db_path: str):
    if not db_path or db_path == ":memory:":
        return create_engine(
            "sqlite+pysqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if "://" in db_path:
        return create_engine(db_path, future=True)

    Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite+pysqlite:///{db_path}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")
        cursor.close()

    return engine


def _to_record(row: QueuedTransaction) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        occurred_at=row.occurred_at,
        total=row.total,
        payload=dict(row.payload or {}),
        sync_state=SyncState(row.sync_state),
        attempts=row.attempts,
        last_error_code=row.last_error_code,
        last_error_message=row.last_error_message,
        next_attempt_at=row.next_attempt_at,
        needs_review=row.needs_review,
        synced_at=row.synced_at,
        created_at=row.created_at,
    )


class PendingRecords:
    """Lazy view over PENDING/FAILED records, oldest first.

    Each iteration re-reads the store page by page (keyset on
    ``occurred_at, id``), so the view can be iterated again and tolerates
    state changes made while it is being walked.
    """

    def __init__(self, store: LocalQueueStore, page_size: int = 100):
        self._store = store
        self._page_size = page_size

    def __iter__(self) -> Iterator[TransactionRecord]:
        cursor: tuple[datetime, str] | None = None
        while True:
            page = self._store._pending_page(cursor, self._page_size)
            yield from page
            if len(page) < self._page_size:
                return
            cursor = (page[-1].occurred_at, page[-1].id)


class LocalQueueStore:
    def __init__(self, db_path: str, *, capacity: int, page_size: int = 100):
        self.capacity = capacity
        self.page_size = page_size
        self._engine = _build_engine(db_path)
        QueueBase.metadata.create_all(self._engine)
        self._sessions = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False, future=True)
        self._lock = threading.RLock()

    def close(self) -> None:
        self._engine.dispose()

    def enqueue(self, record: TransactionRecord) -> TransactionRecord:
        with self._lock, self._sessions() as db:
            if db.get(QueuedTransaction, record.id) is not None:
                raise DuplicateRecord(
                    code="DUPLICATE_RECORD",
                    message="A transaction with this id is already queued",
                    details={"id": record.id},
                )
            stored = db.execute(select(func.count()).select_from(QueuedTransaction)).scalar_one()
            if stored >= self.capacity:
                log_event(logger, "queue_storage_full", level=logging.ERROR, id=record.id, capacity=self.capacity)
                raise StorageFull(
                    code="STORAGE_FULL",
                    message="Local queue is full; purge synced transactions to make room",
                    details={"capacity": self.capacity, "stored": stored},
                )
            row = QueuedTransaction(
                id=record.id,
                occurred_at=to_naive_utc(record.occurred_at),
                total=to_amount(record.total),
                payload=dict(record.payload),
                sync_state=SyncState.PENDING.value,
                attempts=0,
                needs_review=False,
                created_at=utcnow(),
            )
            db.add(row)
            db.commit()
            log_event(logger, "transaction_enqueued", id=row.id, total=row.total, occurred_at=row.occurred_at)
            return _to_record(row)

    def get(self, record_id: str) -> TransactionRecord | None:
        with self._lock, self._sessions() as db:
            row = db.get(QueuedTransaction, record_id)
            return _to_record(row) if row is not None else None

    def list_pending(self) -> PendingRecords:
        return PendingRecords(self, self.page_size)

    def _pending_page(self, cursor: tuple[datetime, str] | None, limit: int) -> list[TransactionRecord]:
        stmt = select(QueuedTransaction).where(QueuedTransaction.sync_state.in_(_RETRYABLE_STATES))
        if cursor is not None:
            occurred_at, record_id = cursor
            stmt = stmt.where(
                or_(
                    QueuedTransaction.occurred_at > occurred_at,
                    and_(QueuedTransaction.occurred_at == occurred_at, QueuedTransaction.id > record_id),
                )
            )
        stmt = stmt.order_by(QueuedTransaction.occurred_at, QueuedTransaction.id).limit(limit)
        with self._lock, self._sessions() as db:
            return [_to_record(row) for row in db.execute(stmt).scalars().all()]

    def list_needs_review(self) -> list[TransactionRecord]:
        stmt = (
            select(QueuedTransaction)
            .where(QueuedTransaction.needs_review.is_(True))
            .order_by(QueuedTransaction.occurred_at, QueuedTransaction.id)
        )
        with self._lock, self._sessions() as db:
            return [_to_record(row) for row in db.execute(stmt).scalars().all()]

    def begin_attempt(self, record_id: str) -> TransactionRecord | None:
        """Move a PENDING record to IN_FLIGHT and count the attempt.

        Returns ``None`` when the record is not PENDING, which is how a second
        submitter learns the record is already taken.
        """
        with self._lock, self._sessions() as db:
            result = db.execute(
                update(QueuedTransaction)
                .where(
                    QueuedTransaction.id == record_id,
                    QueuedTransaction.sync_state == SyncState.PENDING.value,
                )
                .values(
                    sync_state=SyncState.IN_FLIGHT.value,
                    attempts=QueuedTransaction.attempts + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount != 1:
                return None
            return _to_record(db.get(QueuedTransaction, record_id))

    def mark_synced(self, record_id: str, synced_at: datetime | None = None) -> bool:
        with self._lock, self._sessions() as db:
            row = db.get(QueuedTransaction, record_id)
            if row is None:
                raise KeyError(record_id)
            if row.sync_state == SyncState.SYNCED.value:
                return False
            row.sync_state = SyncState.SYNCED.value
            row.synced_at = synced_at or utcnow()
            row.next_attempt_at = None
            row.needs_review = False
            row.updated_at = utcnow()
            db.commit()
            log_event(logger, "transaction_synced", id=record_id, attempts=row.attempts)
            return True

    def mark_failed(
        self,
        record_id: str,
        *,
        error_code: str,
        error_message: str | None = None,
        next_attempt_at: datetime | None = None,
        needs_review: bool = False,
    ) -> bool:
        with self._lock, self._sessions() as db:
            row = db.get(QueuedTransaction, record_id)
            if row is None:
                raise KeyError(record_id)
            if row.sync_state in (SyncState.SYNCED.value, SyncState.FAILED.value):
                return False
            row.sync_state = SyncState.FAILED.value
            row.last_error_code = error_code
            row.last_error_message = error_message
            row.next_attempt_at = None if needs_review else next_attempt_at
            row.needs_review = needs_review
            row.updated_at = utcnow()
            db.commit()
            return True

    def release_due(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        with self._lock, self._sessions() as db:
            result = db.execute(
                update(QueuedTransaction)
                .where(
                    QueuedTransaction.sync_state == SyncState.FAILED.value,
                    QueuedTransaction.needs_review.is_(False),
                    or_(QueuedTransaction.next_attempt_at.is_(None), QueuedTransaction.next_attempt_at <= now),
                )
                .values(sync_state=SyncState.PENDING.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount

    def recover_in_flight(self) -> int:
        """Make attempts interrupted by a shutdown eligible for retry."""
        with self._lock, self._sessions() as db:
            result = db.execute(
                update(QueuedTransaction)
                .where(QueuedTransaction.sync_state == SyncState.IN_FLIGHT.value)
                .values(
                    sync_state=SyncState.FAILED.value,
                    last_error_code="INTERRUPTED",
                    last_error_message="Sync attempt interrupted before an outcome was known",
                    next_attempt_at=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount:
                log_event(logger, "in_flight_recovered", count=result.rowcount)
            return result.rowcount

    def requeue(self, record_id: str) -> bool:
        with self._lock, self._sessions() as db:
            row = db.get(QueuedTransaction, record_id)
            if row is None:
                raise KeyError(record_id)
            if row.sync_state not in _RETRYABLE_STATES:
                return False
            row.sync_state = SyncState.PENDING.value
            row.needs_review = False
            row.next_attempt_at = None
            row.updated_at = utcnow()
            db.commit()
            log_event(logger, "transaction_requeued", id=record_id, attempts=row.attempts)
            return True

    def purge_synced(self, before: datetime | None = None) -> int:
        stmt = delete(QueuedTransaction).where(QueuedTransaction.sync_state == SyncState.SYNCED.value)
        if before is not None:
            stmt = stmt.where(QueuedTransaction.synced_at < before)
        with self._lock, self._sessions() as db:
            result = db.execute(stmt.execution_options(synchronize_session=False))
            db.commit()
            log_event(logger, "synced_purged", count=result.rowcount)
            return result.rowcount

    def health(self) -> QueueHealth:
        with self._lock, self._sessions() as db:
            counts = dict(
                db.execute(
                    select(QueuedTransaction.sync_state, func.count()).group_by(QueuedTransaction.sync_state)
                ).all()
            )
            needs_review = db.execute(
                select(func.count()).select_from(QueuedTransaction).where(QueuedTransaction.needs_review.is_(True))
            ).scalar_one()
            oldest = db.execute(
                select(func.min(QueuedTransaction.occurred_at)).where(
                    QueuedTransaction.sync_state != SyncState.SYNCED.value
                )
            ).scalar_one()
        return QueueHealth(
            capacity=self.capacity,
            stored=sum(counts.values()),
            pending=counts.get(SyncState.PENDING.value, 0),
            in_flight=counts.get(SyncState.IN_FLIGHT.value, 0),
            failed=counts.get(SyncState.FAILED.value, 0),
            synced=counts.get(SyncState.SYNCED.value, 0),
            needs_review=needs_review,
            oldest_pending_at=oldest,
        )
