import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.tillsync.core.error_catalog import AppError, ErrorCatalog
from app.tillsync.core.logging import log_json
from app.tillsync.core.metrics import metrics
from app.tillsync.db.models import SyncedTransaction
from app.tillsync.repos.ledger import LedgerRepository
from app.tillsync.schemas.transactions_sync import SyncTransactionRequest

logger = logging.getLogger("tillsync.ledger")

_CENTS = Decimal("0.01")


@dataclass
class SyncAcceptance:
    entry: SyncedTransaction
    duplicate: bool


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def canonical_submission(submission: SyncTransactionRequest) -> dict:
    # The client-side "synced" flag is not part of the sale and may differ between attempts.
    return {
        "id": submission.id,
        "date": to_naive_utc(submission.date).isoformat(),
        "total": format(submission.total.quantize(_CENTS), "f"),
        "payload": submission.payload,
    }


class SyncLedgerService:
    def __init__(self, db):
        self.repo = LedgerRepository(db)

    @staticmethod
    def fingerprint(payload: object) -> str:
        payload_bytes = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(payload_bytes).hexdigest()

    def exists(self, transaction_id: str) -> bool:
        return self.repo.exists(transaction_id)

    def accept(self, submission: SyncTransactionRequest, *, terminal_id: str | None = None) -> SyncAcceptance:
        request_hash = self.fingerprint(canonical_submission(submission))
        try:
            existing = self.repo.get_by_transaction_id(submission.id)
            if existing is not None:
                return self._replay(existing, request_hash)

            entry = SyncedTransaction(
                transaction_id=submission.id,
                terminal_id=terminal_id,
                occurred_at=to_naive_utc(submission.date),
                total=submission.total.quantize(_CENTS),
                payload=submission.payload,
                request_hash=request_hash,
                synced_at=datetime.utcnow(),
            )
            try:
                entry = self.repo.create(entry)
            except IntegrityError:
                # Lost a race with a concurrent first submission of the same id.
                self.repo.db.rollback()
                existing = self.repo.get_by_transaction_id(submission.id)
                if existing is None:
                    raise AppError(ErrorCatalog.LEDGER_UNAVAILABLE, details={"type": "IntegrityError"})
                return self._replay(existing, request_hash)
        except SQLAlchemyError as exc:
            self.repo.db.rollback()
            log_json(
                logger,
                {
                    "event": "transaction_sync_commit_failed",
                    "transaction_id": submission.id,
                    "terminal_id": terminal_id,
                    "error_class": exc.__class__.__name__,
                },
                level=logging.ERROR,
            )
            raise AppError(ErrorCatalog.LEDGER_UNAVAILABLE, details={"type": exc.__class__.__name__}) from exc

        metrics.increment_sync_accepted()
        log_json(
            logger,
            {
                "event": "transaction_synced",
                "transaction_id": entry.transaction_id,
                "terminal_id": terminal_id,
                "occurred_at": entry.occurred_at,
                "total": entry.total,
            },
        )
        return SyncAcceptance(entry=entry, duplicate=False)

    def _replay(self, existing: SyncedTransaction, request_hash: str) -> SyncAcceptance:
        if existing.request_hash != request_hash:
            metrics.increment_sync_rejected("payload_mismatch")
            raise AppError(
                ErrorCatalog.TRANSACTION_PAYLOAD_MISMATCH,
                details={"id": existing.transaction_id},
            )
        metrics.increment_sync_duplicate()
        log_json(
            logger,
            {
                "event": "transaction_sync_replayed",
                "transaction_id": existing.transaction_id,
                "terminal_id": existing.terminal_id,
            },
        )
        return SyncAcceptance(entry=existing, duplicate=True)
