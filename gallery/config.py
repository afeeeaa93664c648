from __future__ import annotations
import logging
import os
import sys
from functools import lru_cache
from typing import Optional
from pydantic import BaseModel

MB = 1024 * 1024


def _env(name: str, default: str) -> str:
    return os.environ.get(f"GALLERY_{name}", default)


class Settings(BaseModel):
    data_dir: str
    db_path: str
    blob_dir: str

    # shared password; the hash wins when both are set
    password: str = "dev-gallery-password"
    password_hash: Optional[str] = None
    users: list[str] = ["arda", "askim"]

    secret_key: str = "dev-insecure-secret"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 30
    signed_url_expiry_seconds: int = 3600

    # hard caps
    max_total_bytes: int = 9 * 1024 * MB
    max_files_per_upload: int = 20
    max_upload_size_bytes: int = 200 * MB
    max_uploads_per_day: int = 50

    recycle_retention_days: int = 30
    cors_origins: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = _env("DATA_DIR", os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "data")))
        values = {
            "data_dir": data_dir,
            "db_path": _env("DB_PATH", os.path.join(data_dir, "gallery.db")),
            "blob_dir": _env("BLOB_DIR", os.path.join(data_dir, "blobs")),
        }
        for field in ("password", "password_hash", "secret_key"):
            raw = os.environ.get(f"GALLERY_{field.upper()}")
            if raw:
                values[field] = raw
        for field in (
            "access_token_expire_minutes", "signed_url_expiry_seconds",
            "max_total_bytes", "max_files_per_upload", "max_upload_size_bytes",
            "max_uploads_per_day", "recycle_retention_days",
        ):
            raw = os.environ.get(f"GALLERY_{field.upper()}")
            if raw:
                values[field] = int(raw)
        for field in ("users", "cors_origins"):
            raw = os.environ.get(f"GALLERY_{field.upper()}")
            if raw:
                values[field] = [v.strip() for v in raw.split(",") if v.strip()]
        return cls(**values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def setup_logging() -> None:
    logging.basicConfig(
        level=_env("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
