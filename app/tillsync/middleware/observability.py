"""Per-request access log and HTTP metrics.

Every request produces one ``http_request`` JSON line on ``tillsync.request``.
Sync calls also carry the transaction id and, for replays, the idempotency
result so a terminal's retries can be followed through the log.
"""

from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.tillsync.core.db_timing import begin_request_timing, end_request_timing, request_db_time_ms
from app.tillsync.core.error_catalog import IDEMPOTENCY_HEADER
from app.tillsync.core.logging import log_json
from app.tillsync.core.metrics import metrics

logger = logging.getLogger("tillsync.request")


def _route_template(request: Request) -> str:
    scope_route = request.scope.get("route")
    return getattr(scope_route, "path", None) or request.url.path


def build_request_log_payload(
    *,
    request: Request,
    response: Response | None,
    latency_ms: float,
    db_time_ms: float | None,
) -> dict:
    state = request.state
    payload = {
        "event": "http_request",
        "trace_id": getattr(state, "trace_id", ""),
        "terminal_id": getattr(state, "terminal_id", None),
        "route": _route_template(request),
        "method": request.method,
        "status_code": response.status_code if response is not None else 500,
        "latency_ms": round(latency_ms, 2),
        "db_time_ms": None if db_time_ms is None else round(db_time_ms, 2),
        "error_code": getattr(state, "error_code", None),
        "error_class": getattr(state, "error_class", None),
    }
    transaction_id = getattr(state, "transaction_id", None)
    if transaction_id is not None:
        payload["transaction_id"] = transaction_id
    if response is not None and IDEMPOTENCY_HEADER in response.headers:
        payload["idempotency_result"] = response.headers[IDEMPOTENCY_HEADER]
    return payload


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        token = begin_request_timing()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            latency_ms = (time.perf_counter() - started) * 1000
            db_time_ms = request_db_time_ms()
            end_request_timing(token)
            payload = build_request_log_payload(
                request=request,
                response=response,
                latency_ms=latency_ms,
                db_time_ms=db_time_ms,
            )
            level = logging.WARNING if payload["status_code"] >= 500 else logging.INFO
            log_json(logger, payload, level=level)
            metrics.record_http_request(
                route=payload["route"],
                method=payload["method"],
                status_code=payload["status_code"],
                latency_ms=latency_ms,
            )
