from pathlib import Path

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.tillsync.core.config import settings
from app.tillsync.core.error_catalog import ErrorCatalog
from app.tillsync.core.errors import error_response
from app.tillsync.db.models import SyncedTransaction
from app.tillsync.db.session import get_db

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    trace_id = getattr(request.state, "trace_id", "")
    return {"status": "ok", "trace_id": trace_id}


@router.get("/ready")
def ready(request: Request, db=Depends(get_db)):
    """Ready once the ledger table answers a query."""
    trace_id = getattr(request.state, "trace_id", "")
    try:
        db.execute(select(SyncedTransaction.id).limit(1)).first()
    except SQLAlchemyError as exc:
        return error_response(
            code=ErrorCatalog.DB_UNAVAILABLE.code,
            message=ErrorCatalog.DB_UNAVAILABLE.message,
            details={"type": exc.__class__.__name__},
            trace_id=trace_id,
            status_code=ErrorCatalog.DB_UNAVAILABLE.status_code,
        )
    return {
        "status": "ready",
        "ledger": "ok",
        "assets_version": settings.ASSETS_VERSION,
        "assets_available": Path(settings.ASSETS_DIR).is_dir(),
        "trace_id": trace_id,
    }
