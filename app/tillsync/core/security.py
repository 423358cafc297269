"""Shared-secret guard for routes exposed to terminals and external callers.

The caller proves knowledge of ``EXTERNAL_API_KEY`` through either an
``x-api-key`` header or an ``Authorization: Bearer <key>`` header. A server
without a configured key rejects every guarded request.
"""

import hmac
import re

from fastapi import Request

from app.tillsync.core.config import settings
from app.tillsync.core.error_catalog import AppError, ErrorCatalog

API_KEY_HEADER = "x-api-key"
_BEARER_PATTERN = re.compile(r"^Bearer\s+(.*)$", re.IGNORECASE)


def extract_presented_key(headers) -> str | None:
    api_key = (headers.get(API_KEY_HEADER) or "").strip()
    if api_key:
        return api_key
    authorization = (headers.get("authorization") or "").strip()
    match = _BEARER_PATTERN.match(authorization)
    if match:
        return match.group(1).strip() or None
    return None


def is_authorized(presented: str | None, expected: str | None) -> bool:
    if not expected or not presented:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def require_api_key(request: Request) -> str:
    presented = extract_presented_key(request.headers)
    if not is_authorized(presented, settings.EXTERNAL_API_KEY):
        raise AppError(ErrorCatalog.UNAUTHORIZED)
    return presented
