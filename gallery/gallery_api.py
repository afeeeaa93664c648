from __future__ import annotations
import logging
from fastapi import APIRouter, Depends, Request

from .auth import current_user, get_signer
from .blobs import BlobStore, get_blob_store
from .config import Settings, get_settings
from .errors import NotFoundError
from .limiter import UsageLimiter, get_limiter
from .models import GalleryPage, PhotoRecord, WireModel, utcnow
from .photos import group_by_day
from .signing import READ, TokenSigner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["gallery"])


def photo_out(p: PhotoRecord) -> dict:
    out = p.model_dump(mode="json", by_alias=True)
    out["favoritedBy"] = sorted(p.favorited_by)
    return out

def page_out(page: GalleryPage) -> dict:
    return {
        "ok": True,
        "photos": [photo_out(p) for p in page.photos],
        "totalBytes": page.total_bytes,
        "totalPhotos": page.total_photos,
    }

# ==== DTOs ====
class PhotoIn(WireModel):
    photo_id: str

class NoteIn(WireModel):
    photo_id: str
    note: str

class DateIn(WireModel):
    photo_id: str
    day: str

class KeyIn(WireModel):
    key: str

# ==== reads ====
@router.get("/gallery")
def get_gallery(user: str = Depends(current_user), limiter: UsageLimiter = Depends(get_limiter)):
    page = limiter.list_active()
    out = page_out(page)
    out["albums"] = [{"day": day, "photos": [photo_out(p) for p in photos]}
                     for day, photos in group_by_day(page.photos)]
    return out

@router.get("/favorites")
def get_favorites(user: str = Depends(current_user), limiter: UsageLimiter = Depends(get_limiter)):
    return page_out(limiter.list_favorites(user))

@router.get("/recycle")
def get_recycle_bin(user: str = Depends(current_user),
                    limiter: UsageLimiter = Depends(get_limiter),
                    settings: Settings = Depends(get_settings)):
    now = utcnow()
    page = limiter.list_deleted(now)
    out = page_out(page)
    for photo, item in zip(page.photos, out["photos"]):
        age = now - photo.deleted_at
        item["daysRemaining"] = max(0, settings.recycle_retention_days - age.days)
    return out

@router.get("/usage")
def get_usage(user: str = Depends(current_user),
              limiter: UsageLimiter = Depends(get_limiter),
              settings: Settings = Depends(get_settings)):
    usage = limiter.usage()
    return {
        "ok": True,
        **usage.model_dump(by_alias=True),
        "maxBytes": settings.max_total_bytes,
        "maxUploadsPerDay": settings.max_uploads_per_day,
    }

# ==== photo mutations ====
@router.post("/photo/favorite")
def toggle_favorite(payload: PhotoIn, user: str = Depends(current_user), limiter: UsageLimiter = Depends(get_limiter)):
    favorited_by = limiter.toggle_favorite(payload.photo_id, user)
    return {"ok": True, "favoritedBy": sorted(favorited_by)}

@router.post("/photo/edit")
def edit_note(payload: NoteIn, user: str = Depends(current_user), limiter: UsageLimiter = Depends(get_limiter)):
    return {"ok": True, "photo": photo_out(limiter.edit_note(payload.photo_id, payload.note, user))}

@router.post("/photo/edit-date")
def edit_date(payload: DateIn, user: str = Depends(current_user), limiter: UsageLimiter = Depends(get_limiter)):
    return {"ok": True, "photo": photo_out(limiter.edit_album_day(payload.photo_id, payload.day))}

@router.post("/photo/delete")
def delete_photo(payload: PhotoIn, user: str = Depends(current_user), limiter: UsageLimiter = Depends(get_limiter)):
    return {"ok": True, "photo": photo_out(limiter.soft_delete(payload.photo_id))}

@router.post("/photo/restore")
def restore_photo(payload: PhotoIn, user: str = Depends(current_user), limiter: UsageLimiter = Depends(get_limiter)):
    return {"ok": True, "photo": photo_out(limiter.restore(payload.photo_id))}

@router.post("/photo/purge")
def purge_photo(payload: PhotoIn,
                user: str = Depends(current_user),
                limiter: UsageLimiter = Depends(get_limiter),
                blobs: BlobStore = Depends(get_blob_store)):
    storage_key, thumbnail_key = limiter.purge(payload.photo_id)
    # metadata is gone already; blob cleanup is best effort
    blobs.delete_quietly(storage_key)
    blobs.delete_quietly(thumbnail_key)
    return {"ok": True, "storageKey": storage_key, "thumbnailKey": thumbnail_key}

@router.post("/photo/url")
def photo_url(payload: KeyIn, request: Request,
              user: str = Depends(current_user),
              limiter: UsageLimiter = Depends(get_limiter),
              signer: TokenSigner = Depends(get_signer)):
    if payload.key not in limiter.referenced_keys():
        raise NotFoundError("Not found")
    token = signer.issue(payload.key, READ)
    return {"ok": True, "url": f"{request.base_url}api/blobs/read/{payload.key}?token={token}"}

# ==== maintenance ====
@router.post("/maintenance/reconcile-blobs")
def reconcile_blobs(user: str = Depends(current_user),
                    limiter: UsageLimiter = Depends(get_limiter),
                    blobs: BlobStore = Depends(get_blob_store)):
    referenced = limiter.referenced_keys()
    prefixes = tuple(f"photos/{rid}-" for rid in limiter.open_reservation_ids())

    def keep(key: str) -> bool:
        return key in referenced or (bool(prefixes) and key.startswith(prefixes))

    removed, freed = blobs.reconcile(keep)
    return {"ok": True, "removed": removed, "bytesFreed": freed}
