from __future__ import annotations

from contextvars import ContextVar, Token

_request_db_ms: ContextVar[float | None] = ContextVar("request_db_ms", default=None)


def begin_request_timing() -> Token:
    return _request_db_ms.set(0.0)


def end_request_timing(token: Token) -> None:
    _request_db_ms.reset(token)


def record_query_time(elapsed_ms: float) -> None:
    accumulated = _request_db_ms.get()
    if accumulated is None:
        return
    _request_db_ms.set(accumulated + elapsed_ms)


def request_db_time_ms() -> float | None:
    return _request_db_ms.get()
