from __future__ import annotations
from typing import Optional
from datetime import datetime, timezone
import pydantic
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlmodel import SQLModel, Field

DAY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- SQL tables ---

class StateDocument(SQLModel, table=True):
    key: str = Field(primary_key=True)
    body: str  # serialized StorageAggregate
    updated_at: datetime = Field(default_factory=utcnow)

class NoteItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    text: str
    done: bool = Field(default=False)
    category: str = Field(default="todo", index=True)
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)

class NextDate(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)  # always 1, single countdown
    date: str
    title: str
    updated_at: datetime = Field(default_factory=utcnow)


# --- aggregate document ---

class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PhotoRecord(WireModel):
    id: str
    size_bytes: int
    storage_key: str
    thumbnail_key: str
    note: str = ""
    note_author: Optional[str] = None
    uploaded_at: datetime
    album_day: str
    uploader_id: str
    album_tag: str
    filename: Optional[str] = None
    favorited_by: set[str] = set()
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

class PhotoDraft(WireModel):
    """What a client hands to commit; becomes a PhotoRecord."""
    size_bytes: int = pydantic.Field(ge=0)
    storage_key: str
    thumbnail_key: str
    note: str = ""
    album_day: str = pydantic.Field(pattern=DAY_PATTERN)
    uploader_id: str
    album_tag: str
    id: Optional[str] = None
    filename: Optional[str] = None

class Reservation(BaseModel):
    id: str
    file_count: int
    total_size_bytes: int
    created_at: datetime
    committed: bool = False

class StorageAggregate(BaseModel):
    total_bytes: int = 0
    photos: list[PhotoRecord] = []
    reservations: dict[str, Reservation] = {}
    daily_upload_counts: dict[str, int] = {}

    def find_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        for p in self.photos:
            if p.id == photo_id:
                return p
        return None

# --- read views ---

class GalleryPage(WireModel):
    photos: list[PhotoRecord]
    total_bytes: int
    total_photos: int

class Usage(WireModel):
    total_bytes: int
    total_photos: int
    uploads_today: int
