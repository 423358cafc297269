from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from clients.tillsync_terminal.config import TerminalConfig
from clients.tillsync_terminal.errors import NetworkUnavailable, ServerRejected, ServerTransient, classify_response
from clients.tillsync_terminal.models import TransactionRecord, to_naive_utc

API_KEY_HEADER = "x-api-key"
TERMINAL_HEADER = "X-Terminal-ID"
TRACE_HEADER = "X-Trace-ID"
SYNC_PATH = "/transactions/sync"
MANIFEST_PATH = "/assets/manifest.json"


@dataclass(frozen=True)
class SyncReceipt:
    id: str
    synced_at: datetime | None
    duplicate: bool


@dataclass(frozen=True)
class ManifestFetch:
    manifest: dict[str, Any] | None
    etag: str | None
    not_modified: bool = False


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_naive_utc(parsed)


class SyncApiClient:
    """Thin httpx wrapper for the sync service.

    Every call has the configured timeout. Failures surface as ``SyncError``
    subclasses; nothing here retries, that is the sync client's job.
    """

    def __init__(self, config: TerminalConfig, client: httpx.Client | None = None) -> None:
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            verify=config.verify_ssl,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            TERMINAL_HEADER: self.config.terminal_id,
            TRACE_HEADER: str(uuid.uuid4()),
        }
        if self.config.api_key:
            headers[API_KEY_HEADER] = self.config.api_key
        return headers

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = self._headers()
        headers.update(kwargs.pop("headers", None) or {})
        try:
            return self._client.request(method, path, headers=headers, timeout=self.config.timeout_seconds, **kwargs)
        except httpx.TimeoutException as exc:
            raise ServerTransient(
                code="TIMEOUT_ERROR",
                message="Request timed out",
                details=str(exc),
                trace_id=headers[TRACE_HEADER],
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkUnavailable(
                code="NETWORK_ERROR",
                message="Network error while calling the sync service",
                details=str(exc),
                trace_id=headers[TRACE_HEADER],
            ) from exc

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ServerTransient(
                code="INVALID_RESPONSE",
                message="Sync service returned a non-JSON body",
                details=response.text[:200],
                status_code=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise ServerTransient(
                code="INVALID_RESPONSE",
                message="Sync service returned an unexpected body",
                details=payload,
                status_code=response.status_code,
            )
        return payload

    def submit(self, record: TransactionRecord) -> SyncReceipt:
        response = self._send("POST", SYNC_PATH, json=record.to_sync_body())
        if response.status_code >= 400:
            raise classify_response(response)
        payload = self._json(response)
        if not payload.get("success", False) or not payload.get("accepted", True):
            raise ServerRejected(
                code=str(payload.get("code") or "SYNC_NOT_ACCEPTED"),
                message=str(payload.get("message") or "Transaction was not accepted"),
                details=payload,
                status_code=response.status_code,
            )
        return SyncReceipt(
            id=str(payload.get("id") or record.id),
            synced_at=_parse_timestamp(payload.get("syncedAt")),
            duplicate=bool(payload.get("duplicate", False)),
        )

    def exists_remotely(self, record_id: str) -> bool:
        response = self._send("GET", SYNC_PATH, params={"id": record_id})
        if response.status_code >= 400:
            raise classify_response(response)
        return bool(self._json(response).get("exists", False))

    def fetch_manifest(self, etag: str | None = None) -> ManifestFetch:
        headers = {"If-None-Match": etag} if etag else {}
        response = self._send("GET", MANIFEST_PATH, headers=headers)
        if response.status_code == 304:
            return ManifestFetch(manifest=None, etag=etag, not_modified=True)
        if response.status_code >= 400:
            raise classify_response(response)
        return ManifestFetch(manifest=self._json(response), etag=response.headers.get("ETag"))

    def download_asset(self, asset_path: str) -> bytes:
        response = self._send("GET", f"/assets/files/{quote(asset_path)}")
        if response.status_code >= 400:
            raise classify_response(response)
        return response.content
