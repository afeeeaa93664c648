from __future__ import annotations
import logging
import threading
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable, List, Optional, Set, Tuple, TypeVar

from .blobs import get_blob_store
from .config import get_settings
from .db import get_engine
from .janitor import DEFAULT_RETENTION, RecycleJanitor
from .models import GalleryPage, PhotoDraft, PhotoRecord, Reservation, StorageAggregate, Usage, utcnow
from .photos import PhotoRegistry
from .quota import QuotaLedger
from .reservations import ReservationManager
from .state_store import StateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
PurgeHook = Callable[[List[Tuple[str, str]]], None]


class UsageLimiter:
    """
    Sole owner of the StorageAggregate for this process.

    The aggregate is loaded from the StateStore on first use and kept in
    memory afterwards; a restart reloads it. Every mutation runs under one
    lock against a deep copy which only replaces the in-memory aggregate
    after the store accepted it, so a failed write leaves both memory and
    disk as they were.
    """

    def __init__(self, store: StateStore, retention: timedelta = DEFAULT_RETENTION,
                 on_purge: Optional[PurgeHook] = None) -> None:
        self.store = store
        self.retention = retention
        self.on_purge = on_purge
        self._data: Optional[StorageAggregate] = None
        self._lock = threading.RLock()

    def _load(self) -> StorageAggregate:
        if self._data is None:
            self._data = self.store.load() or StorageAggregate()
        return self._data

    def _mutate(self, fn: Callable[[StorageAggregate], T]) -> T:
        with self._lock:
            working = self._load().model_copy(deep=True)
            result = fn(working)
            self.store.save(working)
            self._data = working
            return result

    # --- uploads ---

    def reserve(self, file_count: int, total_size_bytes: int, max_total_bytes: int,
                max_uploads_per_day: int, now: Optional[datetime] = None) -> Reservation:
        now = now or utcnow()
        reservation = self._mutate(lambda agg: ReservationManager(agg).reserve(
            file_count, total_size_bytes, max_total_bytes, max_uploads_per_day, now))
        return reservation.model_copy()

    def commit(self, reservation_id: str, drafts: List[PhotoDraft], now: Optional[datetime] = None,
               max_total_bytes: Optional[int] = None) -> List[PhotoRecord]:
        now = now or utcnow()
        records = self._mutate(lambda agg: ReservationManager(agg).commit(
            reservation_id, drafts, now, max_total_bytes))
        return [r.model_copy(deep=True) for r in records]

    def open_reservation_ids(self) -> Set[str]:
        with self._lock:
            return {rid for rid, r in self._load().reservations.items() if not r.committed}

    # --- photo lifecycle ---

    def toggle_favorite(self, photo_id: str, user_id: str) -> Set[str]:
        return self._mutate(lambda agg: PhotoRegistry(agg).toggle_favorite(photo_id, user_id))

    def edit_note(self, photo_id: str, text: str, author_id: str) -> PhotoRecord:
        photo = self._mutate(lambda agg: PhotoRegistry(agg).edit_note(photo_id, text, author_id))
        return photo.model_copy(deep=True)

    def edit_album_day(self, photo_id: str, new_day: str) -> PhotoRecord:
        photo = self._mutate(lambda agg: PhotoRegistry(agg).edit_album_day(photo_id, new_day))
        return photo.model_copy(deep=True)

    def soft_delete(self, photo_id: str, now: Optional[datetime] = None) -> PhotoRecord:
        now = now or utcnow()
        photo = self._mutate(lambda agg: PhotoRegistry(agg).soft_delete(photo_id, now))
        return photo.model_copy(deep=True)

    def restore(self, photo_id: str) -> PhotoRecord:
        photo = self._mutate(lambda agg: PhotoRegistry(agg).restore(photo_id))
        return photo.model_copy(deep=True)

    def purge(self, photo_id: str) -> Tuple[str, str]:
        return self._mutate(lambda agg: PhotoRegistry(agg).purge(photo_id))

    def sweep(self, now: Optional[datetime] = None) -> List[PhotoRecord]:
        now = now or utcnow()
        with self._lock:
            # nothing eligible: no copy, no write
            if not RecycleJanitor(self._load(), self.retention).eligible(now):
                return []
            expired = self._mutate(lambda agg: RecycleJanitor(agg, self.retention).sweep(now))
        if self.on_purge is not None:
            self.on_purge([(p.storage_key, p.thumbnail_key) for p in expired])
        return expired

    # --- reads ---

    def _page(self, photos: List[PhotoRecord]) -> GalleryPage:
        data = self._load()
        return GalleryPage(
            photos=[p.model_copy(deep=True) for p in photos],
            total_bytes=data.total_bytes,
            total_photos=len(data.photos),
        )

    def list_active(self, now: Optional[datetime] = None) -> GalleryPage:
        self.sweep(now)
        with self._lock:
            return self._page(PhotoRegistry(self._load()).list_active())

    def list_deleted(self, now: Optional[datetime] = None) -> GalleryPage:
        self.sweep(now)
        with self._lock:
            return self._page(PhotoRegistry(self._load()).list_deleted())

    def list_favorites(self, user_id: str, now: Optional[datetime] = None) -> GalleryPage:
        self.sweep(now)
        with self._lock:
            return self._page(PhotoRegistry(self._load()).list_favorites(user_id))

    def usage(self, now: Optional[datetime] = None) -> Usage:
        now = now or utcnow()
        with self._lock:
            data = self._load()
            return Usage(
                total_bytes=data.total_bytes,
                total_photos=len(data.photos),
                uploads_today=QuotaLedger(data).uploads_today(now),
            )

    def referenced_keys(self) -> Set[str]:
        with self._lock:
            keys: Set[str] = set()
            for p in self._load().photos:
                keys.add(p.storage_key)
                keys.add(p.thumbnail_key)
            return keys


def _delete_blobs(pairs: List[Tuple[str, str]]) -> None:
    store = get_blob_store()
    for storage_key, thumbnail_key in pairs:
        store.delete_quietly(storage_key)
        store.delete_quietly(thumbnail_key)

@lru_cache
def get_limiter() -> UsageLimiter:
    """Process-wide owner; the aggregate is reloaded from SQLite after a restart."""
    settings = get_settings()
    return UsageLimiter(
        StateStore(get_engine()),
        retention=timedelta(days=settings.recycle_retention_days),
        on_purge=_delete_blobs,
    )
