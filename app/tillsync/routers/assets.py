from fastapi import APIRouter, Request, Response
from fastapi.responses import FileResponse, JSONResponse

from app.tillsync.core.config import settings
from app.tillsync.services.assets import AssetCatalog

router = APIRouter()


def _catalog() -> AssetCatalog:
    return AssetCatalog(settings.ASSETS_DIR, settings.ASSETS_VERSION)


@router.get("/assets/manifest.json")
def get_asset_manifest(request: Request):
    catalog = _catalog()
    manifest = catalog.build_manifest()
    etag = catalog.etag_for(manifest)
    headers = {"ETag": etag, "Cache-Control": "no-cache"}
    if catalog.matches_etag(request.headers.get("If-None-Match"), etag):
        return Response(status_code=304, headers=headers)
    return JSONResponse(content=manifest.model_dump(mode="json"), headers=headers)


@router.get("/assets/files/{asset_path:path}")
def get_asset_file(asset_path: str):
    return FileResponse(_catalog().resolve_file(asset_path))
