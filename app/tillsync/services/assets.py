from __future__ import annotations

import hashlib
import json
from pathlib import Path

from app.tillsync.core.error_catalog import AppError, ErrorCatalog
from app.tillsync.schemas.assets import AssetEntry, AssetManifest


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


class AssetCatalog:
    def __init__(self, root: str | Path, version: int):
        self.root = Path(root)
        self.version = version

    def build_manifest(self) -> AssetManifest:
        entries: list[AssetEntry] = []
        if self.root.is_dir():
            for path in sorted(item for item in self.root.rglob("*") if item.is_file()):
                entries.append(
                    AssetEntry(
                        path=path.relative_to(self.root).as_posix(),
                        sha256=_sha256(path),
                        size=path.stat().st_size,
                    )
                )
        return AssetManifest(version=self.version, assets=entries)

    @staticmethod
    def etag_for(manifest: AssetManifest) -> str:
        body = json.dumps(manifest.model_dump(mode="json"), sort_keys=True).encode("utf-8")
        return f'"{hashlib.sha256(body).hexdigest()}"'

    @staticmethod
    def matches_etag(if_none_match: str | None, etag: str) -> bool:
        if not if_none_match:
            return False
        candidates = [item.strip() for item in if_none_match.split(",")]
        for candidate in candidates:
            if candidate == "*":
                return True
            if candidate.startswith("W/"):
                candidate = candidate[2:]
            if candidate == etag:
                return True
        return False

    def resolve_file(self, relative_path: str) -> Path:
        root = self.root.resolve()
        candidate = (root / relative_path).resolve()
        if root not in candidate.parents or not candidate.is_file():
            raise AppError(ErrorCatalog.ASSET_NOT_FOUND, details={"path": relative_path})
        return candidate
