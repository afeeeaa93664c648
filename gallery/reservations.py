from __future__ import annotations
import logging
import secrets
import string
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from .errors import AlreadyCommittedError, ExpiredReservationError, NotFoundError, ValidationError
from .models import PhotoDraft, PhotoRecord, Reservation, StorageAggregate
from .quota import QuotaLedger, day_key, is_live

logger = logging.getLogger(__name__)

RESERVATION_HARD_EXPIRY = timedelta(hours=2)
DAILY_COUNT_RETENTION = timedelta(days=7)

def _suffix(n=6) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(n))


class ReservationManager:
    """
    Two-phase upload protocol over one aggregate.

    reserve() claims capacity and a daily slot before any bytes move;
    commit() turns the claim into photo records. Both mutate the aggregate
    they were given in place, so the owner is expected to hand in a working
    copy and persist it afterwards.
    """

    def __init__(self, aggregate: StorageAggregate) -> None:
        self.aggregate = aggregate
        self.ledger = QuotaLedger(aggregate)

    def _new_id(self, now: datetime) -> str:
        rid = f"{int(now.timestamp() * 1000)}-{_suffix()}"
        while rid in self.aggregate.reservations:
            rid = f"{int(now.timestamp() * 1000)}-{_suffix()}"
        return rid

    def reserve(self, file_count: int, total_size_bytes: int, max_total_bytes: int,
                max_uploads_per_day: int, now: datetime) -> Reservation:
        if file_count < 1:
            raise ValidationError("At least one file is required")
        if total_size_bytes < 0:
            raise ValidationError("Total size must not be negative")
        self.ledger.check_admission(total_size_bytes, max_total_bytes, max_uploads_per_day, now)

        reservation = Reservation(
            id=self._new_id(now),
            file_count=file_count,
            total_size_bytes=total_size_bytes,
            created_at=now,
        )
        self.aggregate.reservations[reservation.id] = reservation

        # an attempt burns a slot even if it is never committed
        today = day_key(now)
        self.aggregate.daily_upload_counts[today] = self.aggregate.daily_upload_counts.get(today, 0) + 1

        self.collect_garbage(now)
        logger.info("reserved %s: %d files, %d bytes", reservation.id, file_count, total_size_bytes)
        return reservation

    def collect_garbage(self, now: datetime) -> None:
        cutoff = now - RESERVATION_HARD_EXPIRY
        for rid in [rid for rid, r in self.aggregate.reservations.items() if r.created_at < cutoff]:
            del self.aggregate.reservations[rid]

        oldest_kept = day_key(now - DAILY_COUNT_RETENTION)
        for key in [k for k in self.aggregate.daily_upload_counts if k < oldest_kept]:
            del self.aggregate.daily_upload_counts[key]

    def commit(self, reservation_id: str, drafts: List[PhotoDraft], now: datetime,
               max_total_bytes: Optional[int] = None) -> List[PhotoRecord]:
        """
        Finalize a reservation into photo records.

        Everything is validated before the aggregate is touched. When
        max_total_bytes is given and the reservation has outlived its live
        window (its bytes no longer count as pending), the cap is checked
        again so a late commit cannot push usage past it.
        """
        reservation = self.aggregate.reservations.get(reservation_id)
        if reservation is None:
            raise NotFoundError("Invalid or expired reservation")
        if now - reservation.created_at > RESERVATION_HARD_EXPIRY:
            raise ExpiredReservationError("Invalid or expired reservation")
        if reservation.committed:
            raise AlreadyCommittedError("Reservation already committed")

        if not drafts:
            raise ValidationError("No photos to commit")
        if len(drafts) > reservation.file_count:
            raise ValidationError(f"Reservation covers {reservation.file_count} files, got {len(drafts)}")
        added = sum(d.size_bytes for d in drafts)
        if added > reservation.total_size_bytes:
            raise ValidationError("Committed size exceeds reserved size")
        if max_total_bytes is not None and not is_live(reservation, now):
            self.ledger.check_bytes(added, max_total_bytes, now)

        taken = {p.id for p in self.aggregate.photos}
        records: List[PhotoRecord] = []
        for d in drafts:
            pid = d.id or uuid.uuid4().hex
            if pid in taken:
                raise ValidationError(f"Duplicate photo id {pid}")
            taken.add(pid)
            records.append(PhotoRecord(
                id=pid,
                size_bytes=d.size_bytes,
                storage_key=d.storage_key,
                thumbnail_key=d.thumbnail_key,
                note=d.note,
                uploaded_at=now,
                album_day=d.album_day,
                uploader_id=d.uploader_id,
                album_tag=d.album_tag,
                filename=d.filename,
            ))

        self.aggregate.photos.extend(records)
        self.aggregate.total_bytes += added
        reservation.committed = True
        logger.info("committed %s: %d photos, %d bytes", reservation_id, len(records), added)
        return records
