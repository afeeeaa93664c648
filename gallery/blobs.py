from __future__ import annotations
import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Callable, Iterable, Tuple

from .config import get_settings
from .errors import BlobNotFound, ValidationError

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]*$")
_TYPE_SUFFIX = ".content-type"


class BlobStore:
    """
    Raw image bytes on local disk: <base>/<key> plus <key>.content-type.
    Knows nothing about quotas; keys and sizes are managed by the limiter.
    """

    def __init__(self, base: str) -> None:
        self.base = Path(base).resolve()
        self.base.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key or "") or ".." in key.split("/") or key.endswith(_TYPE_SUFFIX):
            raise ValidationError("Invalid key")
        p = (self.base / key).resolve()
        # prevent path traversal
        if not str(p).startswith(str(self.base) + os.sep):
            raise ValidationError("Invalid key")
        return p

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> int:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_name(p.name + ".tmp")
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, p)
        Path(str(p) + _TYPE_SUFFIX).write_text(content_type, encoding="utf-8")
        return len(data)

    def get(self, key: str) -> Tuple[bytes, str]:
        p = self._path(key)
        if not p.is_file():
            raise BlobNotFound("Not found")
        type_path = Path(str(p) + _TYPE_SUFFIX)
        content_type = type_path.read_text(encoding="utf-8") if type_path.exists() else "image/jpeg"
        return p.read_bytes(), content_type

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        p = self._path(key)
        for f in (p, Path(str(p) + _TYPE_SUFFIX)):
            if f.exists():
                f.unlink()

    def delete_quietly(self, key: str) -> None:
        try:
            self.delete(key)
        except (OSError, ValidationError):
            logger.exception("failed to delete blob %s", key)

    def keys(self) -> Iterable[str]:
        for p in self.base.rglob("*"):
            if p.is_file() and not p.name.endswith(_TYPE_SUFFIX) and not p.name.endswith(".tmp"):
                yield p.relative_to(self.base).as_posix()

    def reconcile(self, keep: Callable[[str], bool]) -> Tuple[int, int]:
        """Remove blobs for which keep(key) is false. Returns (files_removed, bytes_freed)."""
        removed, freed = 0, 0
        for key in list(self.keys()):
            if keep(key):
                continue
            p = self.base / key
            size = p.stat().st_size
            for f in (p, Path(str(p) + _TYPE_SUFFIX)):
                if f.exists():
                    f.unlink()
            removed += 1
            freed += size
        if removed:
            logger.info("reconcile removed %d orphaned blobs (%d bytes)", removed, freed)
        return removed, freed


@lru_cache
def get_blob_store() -> BlobStore:
    return BlobStore(get_settings().blob_dir)
