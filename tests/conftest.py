import importlib
import os
from pathlib import Path

os.environ.setdefault("EXTERNAL_API_KEY", "test-api-key")

import pytest
from fastapi.testclient import TestClient
from alembic import command
from alembic.config import Config

from tests.sync_helpers import TEST_API_KEY


def _setup_app(database_url: str, assets_dir: Path):
    from app.tillsync.core.config import settings

    settings.DATABASE_URL = database_url
    settings.EXTERNAL_API_KEY = TEST_API_KEY
    settings.ASSETS_DIR = str(assets_dir)
    settings.ASSETS_VERSION = 1

    import app.tillsync.db.session as session
    import app.main as main

    importlib.reload(session)

    return main.create_app(), session


def _run_migrations(database_url: str):
    config = Config("alembic.ini")
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


@pytest.fixture()
def assets_dir(tmp_path: Path) -> Path:
    root = tmp_path / "assets"
    (root / "js").mkdir(parents=True)
    (root / "index.html").write_text("<html>till</html>", encoding="utf-8")
    (root / "js" / "app.js").write_text("console.log('till');", encoding="utf-8")
    return root


@pytest.fixture()
def app_with_session(tmp_path: Path, assets_dir: Path):
    database_url = f"sqlite+pysqlite:///{tmp_path / 'test.db'}"
    _run_migrations(database_url)
    app, session = _setup_app(database_url, assets_dir)
    yield app, session
    session.engine.dispose()


@pytest.fixture()
def client(app_with_session):
    app, _ = app_with_session
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def db_session(app_with_session):
    _, session = app_with_session
    db = session.SessionLocal()
    try:
        yield db
    finally:
        db.close()
