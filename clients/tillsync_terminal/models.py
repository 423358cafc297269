from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

_CENTS = Decimal("0.01")


class SyncState(str, Enum):
    PENDING = "PENDING"
    IN_FLIGHT = "IN_FLIGHT"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_amount(value: Decimal | str | int) -> Decimal:
    if isinstance(value, float):
        raise TypeError("monetary amounts must be Decimal, str or int, not float")
    amount = Decimal(str(value))
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return amount.quantize(_CENTS)


@dataclass(frozen=True)
class TransactionRecord:
    id: str
    occurred_at: datetime
    total: Decimal
    payload: dict[str, Any] = field(default_factory=dict)
    sync_state: SyncState = SyncState.PENDING
    attempts: int = 0
    last_error_code: str | None = None
    last_error_message: str | None = None
    next_attempt_at: datetime | None = None
    needs_review: bool = False
    synced_at: datetime | None = None
    created_at: datetime | None = None

    def to_sync_body(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.occurred_at.replace(tzinfo=timezone.utc).isoformat(),
            "total": format(self.total, "f"),
            "synced": self.sync_state is SyncState.SYNCED,
            "payload": self.payload,
        }


def new_transaction_record(
    total: Decimal | str | int,
    payload: dict[str, Any] | None = None,
    *,
    occurred_at: datetime | None = None,
    record_id: str | None = None,
) -> TransactionRecord:
    return TransactionRecord(
        id=record_id or str(uuid.uuid4()),
        occurred_at=to_naive_utc(occurred_at) if occurred_at else utcnow(),
        total=to_amount(total),
        payload=dict(payload or {}),
    )


@dataclass(frozen=True)
class QueueHealth:
    capacity: int
    stored: int
    pending: int
    in_flight: int
    failed: int
    synced: int
    needs_review: int
    oldest_pending_at: datetime | None

    @property
    def storage_full(self) -> bool:
        return self.stored >= self.capacity

    def to_dict(self) -> dict[str, Any]:
        return {
            "capacity": self.capacity,
            "stored": self.stored,
            "pending": self.pending,
            "in_flight": self.in_flight,
            "failed": self.failed,
            "synced": self.synced,
            "needs_review": self.needs_review,
            "oldest_pending_at": self.oldest_pending_at.isoformat() if self.oldest_pending_at else None,
            "storage_full": self.storage_full,
        }
