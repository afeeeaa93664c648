from __future__ import annotations
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import Field
from starlette.concurrency import run_in_threadpool

from .auth import current_user, get_signer
from .blobs import BlobStore, get_blob_store
from .config import MB, Settings, get_settings
from .errors import InvalidTokenError, ValidationError
from .limiter import UsageLimiter, get_limiter
from .models import DAY_PATTERN, PhotoDraft, WireModel
from .signing import READ, WRITE, TokenSigner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["upload"])

SHARED_ALBUM = "us"


def full_key(photo_id: str) -> str:
    return f"photos/{photo_id}-full"

def thumb_key(photo_id: str) -> str:
    return f"photos/{photo_id}-thumb"

# ==== DTOs ====
class FileIn(WireModel):
    name: str
    size: int = Field(ge=0)
    type: str = "application/octet-stream"

class PrepareIn(WireModel):
    files: List[FileIn]

class UploadTarget(WireModel):
    id: str
    upload_url: str
    thumbnail_upload_url: str

class PrepareOut(WireModel):
    ok: bool = True
    reservation_id: str
    uploads: List[UploadTarget]

class CommitPhotoIn(WireModel):
    id: str
    filename: Optional[str] = None
    note: str = ""
    day: str = Field(pattern=DAY_PATTERN)
    size: int = Field(ge=0)

class CommitIn(WireModel):
    reservation_id: str
    album: str
    photos: List[CommitPhotoIn]

# ==== two-phase upload ====
@router.post("/upload/prepare", response_model=PrepareOut)
def prepare_upload(payload: PrepareIn, request: Request,
                   user: str = Depends(current_user),
                   settings: Settings = Depends(get_settings),
                   limiter: UsageLimiter = Depends(get_limiter),
                   signer: TokenSigner = Depends(get_signer)):
    if not payload.files:
        raise ValidationError("No files to upload")
    if len(payload.files) > settings.max_files_per_upload:
        raise ValidationError(f"Max {settings.max_files_per_upload} files per upload")
    total_size = sum(f.size for f in payload.files)
    if total_size > settings.max_upload_size_bytes:
        raise ValidationError(f"Max upload size is {settings.max_upload_size_bytes // MB} MB")

    reservation = limiter.reserve(
        len(payload.files), total_size,
        settings.max_total_bytes, settings.max_uploads_per_day,
    )

    base = f"{request.base_url}api/blobs/upload"
    uploads = []
    for idx in range(len(payload.files)):
        pid = f"{reservation.id}-{idx}"
        full_token = signer.issue(full_key(pid), WRITE, reservation.id)
        thumb_token = signer.issue(thumb_key(pid), WRITE, reservation.id)
        uploads.append(UploadTarget(
            id=pid,
            upload_url=f"{base}/{full_key(pid)}?token={full_token}",
            thumbnail_upload_url=f"{base}/{thumb_key(pid)}?token={thumb_token}",
        ))
    logger.info("%s prepared upload %s (%d files)", user, reservation.id, len(uploads))
    return PrepareOut(reservation_id=reservation.id, uploads=uploads)

@router.post("/upload/commit")
def commit_upload(payload: CommitIn,
                  user: str = Depends(current_user),
                  settings: Settings = Depends(get_settings),
                  limiter: UsageLimiter = Depends(get_limiter)):
    if payload.album not in [*settings.users, SHARED_ALBUM]:
        raise ValidationError(f"Unknown album {payload.album}")
    drafts = []
    for p in payload.photos:
        # ids are handed out by prepare as <reservation>-<index>
        if not p.id.startswith(f"{payload.reservation_id}-"):
            raise ValidationError(f"Photo {p.id} does not belong to this reservation")
        drafts.append(PhotoDraft(
            id=p.id,
            filename=p.filename,
            note=p.note,
            album_day=p.day,
            size_bytes=p.size,
            storage_key=full_key(p.id),
            thumbnail_key=thumb_key(p.id),
            uploader_id=user,
            album_tag=payload.album,
        ))
    records = limiter.commit(payload.reservation_id, drafts, max_total_bytes=settings.max_total_bytes)
    return {"ok": True, "photoIds": [r.id for r in records]}

# ==== blob transfer (signed URLs, no bearer token) ====
@router.put("/blobs/upload/{key:path}")
async def upload_blob(key: str, request: Request, token: str = Query(...),
                      settings: Settings = Depends(get_settings),
                      signer: TokenSigner = Depends(get_signer),
                      limiter: UsageLimiter = Depends(get_limiter),
                      blobs: BlobStore = Depends(get_blob_store)):
    claims = signer.verify(token, key, WRITE)
    # the limiter lock and the disk write both block; keep them off the event loop
    open_ids = await run_in_threadpool(limiter.open_reservation_ids)
    if claims.get("rid") not in open_ids:
        raise InvalidTokenError("Reservation is no longer open")
    data = await request.body()
    if len(data) > settings.max_upload_size_bytes:
        raise ValidationError("Upload too large")
    content_type = request.headers.get("content-type") or "application/octet-stream"
    await run_in_threadpool(blobs.put, key, data, content_type)
    return {"ok": True, "size": len(data)}

@router.get("/blobs/read/{key:path}")
def read_blob(key: str, token: str = Query(...),
              signer: TokenSigner = Depends(get_signer),
              blobs: BlobStore = Depends(get_blob_store)):
    signer.verify(token, key, READ)
    data, content_type = blobs.get(key)
    return Response(data, media_type=content_type, headers={"Cache-Control": "private, max-age=3600"})
