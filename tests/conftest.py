from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine

from gallery import blobs, config, db, limiter
from gallery.models import PhotoDraft, StorageAggregate
from gallery.state_store import StateStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PASSWORD = "letmein"


def make_draft(size, day="2026-03-01", **kw):
    values = {
        "size_bytes": size,
        "storage_key": f"photos/{kw.get('id') or size}-full",
        "thumbnail_key": f"photos/{kw.get('id') or size}-thumb",
        "album_day": day,
        "uploader_id": "u1",
        "album_tag": "us",
    }
    values.update(kw)
    return PhotoDraft(**values)


def _clear_caches():
    config.get_settings.cache_clear()
    db.get_engine.cache_clear()
    blobs.get_blob_store.cache_clear()
    limiter.get_limiter.cache_clear()


@pytest.fixture
def aggregate():
    return StorageAggregate()


@pytest.fixture
def store(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'state.db'}")
    SQLModel.metadata.create_all(engine)
    return StateStore(engine)


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("GALLERY_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("GALLERY_PASSWORD", PASSWORD)
    monkeypatch.setenv("GALLERY_SECRET_KEY", "test-secret")
    monkeypatch.setenv("GALLERY_USERS", "u1,u2")
    monkeypatch.setenv("GALLERY_MAX_TOTAL_BYTES", "1000")
    monkeypatch.setenv("GALLERY_MAX_UPLOAD_SIZE_BYTES", "800")
    monkeypatch.setenv("GALLERY_MAX_FILES_PER_UPLOAD", "3")
    monkeypatch.setenv("GALLERY_MAX_UPLOADS_PER_DAY", "5")
    _clear_caches()
    yield tmp_path
    _clear_caches()


@pytest.fixture
def client(env):
    from gallery.main import app
    return TestClient(app)


def login(client, user="u1"):
    res = client.post("/api/auth/verify", json={"password": PASSWORD, "user": user})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.fixture
def auth(client):
    return login(client)
