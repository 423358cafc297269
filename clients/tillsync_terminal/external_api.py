from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from clients.tillsync_terminal.config import TerminalConfig
from clients.tillsync_terminal.errors import NetworkUnavailable, ServerRejected, ServerTransient, classify_response

INVENTORY_PATH = "/api/external/inventory"
SERVICES_PATH = "/api/external/services"
CATEGORIES_PATH = "/api/external/categories"


@dataclass(frozen=True)
class ExternalPage:
    items: list[dict[str, Any]] = field(default_factory=list)
    page: int = 1
    per_page: int = 0
    total: int = 0
    total_pages: int = 1


class ExternalApiService:
    """Read-only access to the upstream inventory/services catalog."""

    def __init__(self, config: TerminalConfig, client: httpx.Client | None = None):
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=config.inventory_api_url,
            timeout=config.timeout_seconds,
            verify=config.verify_ssl,
        )

    @property
    def configured(self) -> bool:
        return bool(self.config.inventory_api_url)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _get(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        headers = {"x-api-key": self.config.inventory_api_key, "Accept": "application/json"}
        try:
            response = self._client.get(path, params={k: v for k, v in params.items() if v}, headers=headers)
        except httpx.TimeoutException as exc:
            raise ServerTransient(code="TIMEOUT_ERROR", message="Upstream catalog timed out", details=str(exc)) from exc
        except httpx.TransportError as exc:
            raise NetworkUnavailable(
                code="NETWORK_ERROR", message="Upstream catalog unreachable", details=str(exc)
            ) from exc
        if response.status_code >= 400:
            raise classify_response(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ServerRejected(
                code="INVALID_RESPONSE",
                message="Upstream catalog returned a non-JSON body",
                status_code=response.status_code,
            ) from exc
        return payload if isinstance(payload, dict) else {"data": payload}

    def fetch_page(self, path: str, *, page: int = 1, per_page: int | None = None, search: str = "") -> ExternalPage:
        per_page = per_page or self.config.inventory_per_page
        payload = self._get(path, {"page": str(page), "perPage": str(per_page), "search": search})
        items = payload.get("data") or []
        pagination = payload.get("pagination") or {}
        return ExternalPage(
            items=list(items),
            page=int(pagination.get("page", page)),
            per_page=int(pagination.get("perPage", per_page)),
            total=int(pagination.get("total", len(items))),
            total_pages=int(pagination.get("totalPages", 1)),
        )

    def iter_items(self, path: str, *, search: str = "", per_page: int | None = None) -> Iterator[dict[str, Any]]:
        page = 1
        while True:
            result = self.fetch_page(path, page=page, per_page=per_page, search=search)
            yield from result.items
            if page >= result.total_pages or not result.items:
                return
            page += 1

    def inventory_items(self, search: str = "") -> list[dict[str, Any]]:
        return list(self.iter_items(INVENTORY_PATH, search=search))

    def services(self, search: str = "") -> list[dict[str, Any]]:
        return list(self.iter_items(SERVICES_PATH, search=search))

    def categories(self, search: str = "") -> list[dict[str, Any]]:
        return list(self._get(CATEGORIES_PATH, {"search": search}).get("data") or [])
