from pydantic import BaseModel


class AssetEntry(BaseModel):
    path: str
    sha256: str
    size: int


class AssetManifest(BaseModel):
    version: int
    assets: list[AssetEntry]
