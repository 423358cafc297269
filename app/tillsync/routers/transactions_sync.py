from __future__ import annotations

from datetime import timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.tillsync.core.config import settings
from app.tillsync.core.error_catalog import IDEMPOTENCY_HEADER, AppError, ErrorCatalog
from app.tillsync.core.metrics import metrics
from app.tillsync.core.security import require_api_key
from app.tillsync.db.session import get_db
from app.tillsync.schemas.transactions_sync import (
    SyncTransactionRequest,
    SyncTransactionResponse,
    TransactionExistenceResponse,
)
from app.tillsync.services.ledger import SyncAcceptance, SyncLedgerService

TERMINAL_HEADER = "X-Terminal-ID"

router = APIRouter(dependencies=[Depends(require_api_key)])


def _validate_payload(payload: dict | None) -> None:
    if payload is None:
        return
    lines = payload.get("lines")
    if lines is None:
        return
    if not isinstance(lines, list):
        raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "payload.lines must be a list"})
    if len(lines) > settings.SYNC_MAX_PAYLOAD_LINES:
        raise AppError(
            ErrorCatalog.VALIDATION_ERROR,
            details={
                "message": "payload.lines exceeds the allowed number of lines",
                "max_lines": settings.SYNC_MAX_PAYLOAD_LINES,
            },
        )


def _acceptance_response(acceptance: SyncAcceptance) -> SyncTransactionResponse:
    entry = acceptance.entry
    message = "Transaction already synced" if acceptance.duplicate else "Transaction synced successfully"
    return SyncTransactionResponse(
        duplicate=acceptance.duplicate,
        id=entry.transaction_id,
        syncedAt=entry.synced_at.replace(tzinfo=timezone.utc),
        message=message,
    )


@router.post("/transactions/sync", response_model=SyncTransactionResponse)
def sync_transaction(
    request: Request,
    payload: SyncTransactionRequest,
    db=Depends(get_db),
):
    request.state.transaction_id = payload.id
    try:
        _validate_payload(payload.payload)
    except AppError:
        metrics.increment_sync_rejected("validation")
        raise

    terminal_id = (request.headers.get(TERMINAL_HEADER) or "").strip() or None
    acceptance = SyncLedgerService(db).accept(payload, terminal_id=terminal_id)
    response = _acceptance_response(acceptance)
    if acceptance.duplicate:
        return JSONResponse(
            status_code=200,
            content=response.model_dump(mode="json"),
            headers={IDEMPOTENCY_HEADER: ErrorCatalog.IDEMPOTENCY_REPLAY.code},
        )
    return response


@router.get("/transactions/sync", response_model=TransactionExistenceResponse)
def transaction_exists(
    request: Request,
    transaction_id: str | None = Query(default=None, alias="id"),
    db=Depends(get_db),
):
    normalized = (transaction_id or "").strip()
    if not normalized:
        raise AppError(ErrorCatalog.TRANSACTION_ID_REQUIRED)
    request.state.transaction_id = normalized
    return TransactionExistenceResponse(
        exists=SyncLedgerService(db).exists(normalized),
        transactionId=normalized,
    )
