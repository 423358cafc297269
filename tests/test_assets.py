import hashlib

from app.tillsync.core.config import settings


def test_manifest_lists_assets_with_checksums(client, assets_dir):
    response = client.get("/assets/manifest.json")

    assert response.status_code == 200
    manifest = response.json()
    assert manifest["version"] == 1
    paths = {asset["path"]: asset for asset in manifest["assets"]}
    assert set(paths) == {"index.html", "js/app.js"}
    expected = hashlib.sha256((assets_dir / "index.html").read_bytes()).hexdigest()
    assert paths["index.html"]["sha256"] == expected
    assert paths["index.html"]["size"] == len("<html>till</html>")
    assert response.headers["ETag"].startswith('"')


def test_manifest_not_modified_when_etag_matches(client):
    etag = client.get("/assets/manifest.json").headers["ETag"]

    response = client.get("/assets/manifest.json", headers={"If-None-Match": etag})

    assert response.status_code == 304
    assert response.headers["ETag"] == etag


def test_manifest_etag_changes_with_version(client, monkeypatch):
    etag = client.get("/assets/manifest.json").headers["ETag"]
    monkeypatch.setattr(settings, "ASSETS_VERSION", 2)

    response = client.get("/assets/manifest.json", headers={"If-None-Match": etag})

    assert response.status_code == 200
    assert response.json()["version"] == 2
    assert response.headers["ETag"] != etag


def test_asset_file_is_served(client):
    response = client.get("/assets/files/js/app.js")
    assert response.status_code == 200
    assert response.content == b"console.log('till');"


def test_asset_outside_root_is_not_found(client, tmp_path):
    (tmp_path / "secret.txt").write_text("nope", encoding="utf-8")

    response = client.get("/assets/files/..%2Fsecret.txt")

    assert response.status_code == 404
    assert response.json()["code"] == "ASSET_NOT_FOUND"


def test_unknown_asset_is_not_found(client):
    response = client.get("/assets/files/missing.css")
    assert response.status_code == 404
