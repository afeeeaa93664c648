from __future__ import annotations
import logging
import re
from datetime import datetime
from typing import List, Set, Tuple

from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .models import DAY_PATTERN, PhotoRecord, StorageAggregate

logger = logging.getLogger(__name__)


def parse_day(day: str) -> datetime:
    if not re.match(DAY_PATTERN, day or ""):
        raise ValidationError("Day must be YYYY-MM-DD")
    try:
        return datetime.strptime(day, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"Invalid day {day}")


class PhotoRegistry:
    """
    Catalog of committed photos and their lifecycle.

    Active --soft_delete--> Deleted --restore--> Active
    Deleted --purge--> removed (terminal)

    Active photos cannot be purged directly.
    """

    def __init__(self, aggregate: StorageAggregate) -> None:
        self.aggregate = aggregate

    def get(self, photo_id: str) -> PhotoRecord:
        photo = self.aggregate.find_photo(photo_id)
        if photo is None:
            raise NotFoundError("Photo not found")
        return photo

    def toggle_favorite(self, photo_id: str, user_id: str) -> Set[str]:
        photo = self.get(photo_id)
        if user_id in photo.favorited_by:
            photo.favorited_by.discard(user_id)
        else:
            photo.favorited_by.add(user_id)
        return set(photo.favorited_by)

    def edit_note(self, photo_id: str, text: str, author_id: str) -> PhotoRecord:
        photo = self.get(photo_id)
        photo.note = text
        photo.note_author = author_id
        return photo

    def edit_album_day(self, photo_id: str, new_day: str) -> PhotoRecord:
        photo = self.get(photo_id)
        day = parse_day(new_day)
        # keep the time of day, move the date so sorting follows the corrected day
        photo.uploaded_at = photo.uploaded_at.replace(year=day.year, month=day.month, day=day.day)
        photo.album_day = new_day
        return photo

    def soft_delete(self, photo_id: str, now: datetime) -> PhotoRecord:
        photo = self.get(photo_id)
        if photo.is_deleted:
            raise InvalidTransitionError("Photo is already deleted")
        photo.deleted_at = now
        return photo

    def restore(self, photo_id: str) -> PhotoRecord:
        photo = self.get(photo_id)
        if not photo.is_deleted:
            raise InvalidTransitionError("Photo is not deleted")
        photo.deleted_at = None
        return photo

    def purge(self, photo_id: str) -> Tuple[str, str]:
        """Drop a deleted photo; returns (storage_key, thumbnail_key) for blob cleanup."""
        photo = self.get(photo_id)
        if not photo.is_deleted:
            raise InvalidTransitionError("Only deleted photos can be purged")
        self._remove(photo)
        logger.info("purged %s (%d bytes)", photo.id, photo.size_bytes)
        return photo.storage_key, photo.thumbnail_key

    def _remove(self, photo: PhotoRecord) -> None:
        self.aggregate.photos.remove(photo)
        self.aggregate.total_bytes -= photo.size_bytes

    def list_active(self) -> List[PhotoRecord]:
        rows = [p for p in self.aggregate.photos if not p.is_deleted]
        return sorted(rows, key=lambda p: p.uploaded_at, reverse=True)

    def list_deleted(self) -> List[PhotoRecord]:
        rows = [p for p in self.aggregate.photos if p.is_deleted]
        return sorted(rows, key=lambda p: p.deleted_at, reverse=True)

    def list_favorites(self, user_id: str) -> List[PhotoRecord]:
        return [p for p in self.list_active() if user_id in p.favorited_by]


def group_by_day(photos: List[PhotoRecord]) -> List[Tuple[str, List[PhotoRecord]]]:
    """Albums keyed by album day, newest day first, newest photo first."""
    groups: dict[str, List[PhotoRecord]] = {}
    for p in photos:
        groups.setdefault(p.album_day, []).append(p)
    return [
        (day, sorted(groups[day], key=lambda p: p.uploaded_at, reverse=True))
        for day in sorted(groups, reverse=True)
    ]
