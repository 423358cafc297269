from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

import httpx

ALREADY_SYNCED_CODE = "TRANSACTION_ALREADY_SYNCED"
_TRANSIENT_STATUSES = {408, 425, 429}
_TRANSIENT_CODES = {"LOCK_TIMEOUT", "DB_UNAVAILABLE", "LEDGER_UNAVAILABLE"}


@dataclass(eq=False)
class SyncError(Exception):
    code: str
    message: str
    details: Any = None
    trace_id: str | None = None
    status_code: int | None = None

    retryable: ClassVar[bool] = False

    def __str__(self) -> str:
        status = f"[{self.status_code}] " if self.status_code else ""
        trace = f" trace_id={self.trace_id}" if self.trace_id else ""
        return f"{status}{self.code}: {self.message}{trace}"


class NetworkUnavailable(SyncError):
    """No HTTP response: connection refused, DNS failure, dropped link."""

    retryable = True


class ServerTransient(SyncError):
    """5xx, throttling, or a request that exceeded its timeout."""

    retryable = True


class ServerRejected(SyncError):
    """Validation or other 4xx rejection. Needs a human if it keeps happening."""


class DuplicateAccepted(SyncError):
    """The server already holds this transaction. Counts as success."""


class Unauthorized(SyncError):
    pass


class StorageFull(SyncError):
    pass


class DuplicateRecord(SyncError):
    pass


def _trace_id(response: httpx.Response, payload: object) -> str | None:
    if isinstance(payload, dict) and payload.get("trace_id"):
        return str(payload["trace_id"])
    return response.headers.get("X-Trace-ID")


def classify_response(response: httpx.Response) -> SyncError:
    """Map a failed HTTP response to the error kind the sync client acts on."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        code = str(payload.get("code") or "HTTP_ERROR")
        message = str(payload.get("message") or payload.get("error") or response.text or "HTTP request failed")
        details = payload.get("details")
    else:
        code = "HTTP_ERROR"
        message = response.text or "HTTP request failed"
        details = payload

    status_code = response.status_code
    kwargs = {
        "code": code,
        "message": message,
        "details": details,
        "trace_id": _trace_id(response, payload),
        "status_code": status_code,
    }
    if status_code in {401, 403}:
        return Unauthorized(**kwargs)
    if status_code == 409 and code == ALREADY_SYNCED_CODE:
        return DuplicateAccepted(**kwargs)
    if status_code >= 500 or status_code in _TRANSIENT_STATUSES or code in _TRANSIENT_CODES:
        return ServerTransient(**kwargs)
    return ServerRejected(**kwargs)
