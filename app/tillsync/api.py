from fastapi import APIRouter

from app.tillsync.core.config import settings
from app.tillsync.routers.assets import router as assets_router
from app.tillsync.routers.health import router as health_router
from app.tillsync.routers.metrics import router as metrics_router
from app.tillsync.routers.transactions_sync import router as transactions_sync_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(transactions_sync_router, tags=["transactions-sync"])
api_router.include_router(assets_router, tags=["assets"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
