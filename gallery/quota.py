from __future__ import annotations
import logging
from datetime import datetime, timedelta

from .config import MB
from .errors import QuotaExceededError
from .models import Reservation, StorageAggregate

logger = logging.getLogger(__name__)

# a reservation holds capacity for this long, then stops counting
RESERVATION_LIVE_WINDOW = timedelta(hours=1)

KB = 1024
GB = 1024 * MB


def human_size(n: int) -> str:
    for unit, size in (("GB", GB), ("MB", MB), ("KB", KB)):
        if n >= size:
            return f"{n / size:.1f} {unit}"
    return f"{n} bytes"

def day_key(now: datetime) -> str:
    return now.date().isoformat()

def is_live(reservation: Reservation, now: datetime) -> bool:
    return not reservation.committed and now - reservation.created_at < RESERVATION_LIVE_WINDOW


class QuotaLedger:
    """Read-only admission answers over the aggregate; never mutates it."""

    def __init__(self, aggregate: StorageAggregate) -> None:
        self.aggregate = aggregate

    def pending_reserved_bytes(self, now: datetime) -> int:
        return sum(r.total_size_bytes for r in self.aggregate.reservations.values() if is_live(r, now))

    def projected_total(self, candidate_bytes: int, now: datetime) -> int:
        return self.aggregate.total_bytes + self.pending_reserved_bytes(now) + candidate_bytes

    def uploads_today(self, now: datetime) -> int:
        return self.aggregate.daily_upload_counts.get(day_key(now), 0)

    def remaining_bytes(self, max_total_bytes: int, now: datetime) -> int:
        return max_total_bytes - self.aggregate.total_bytes - self.pending_reserved_bytes(now)

    def check_bytes(self, candidate_bytes: int, max_total_bytes: int, now: datetime) -> None:
        if self.projected_total(candidate_bytes, now) > max_total_bytes:
            remaining = max(0, self.remaining_bytes(max_total_bytes, now))
            logger.info("storage cap hit: %d bytes requested, %d remaining", candidate_bytes, remaining)
            raise QuotaExceededError(
                f"Not enough storage. {human_size(remaining)} remaining.",
                remaining_bytes=remaining,
            )

    def check_admission(self, candidate_bytes: int, max_total_bytes: int,
                        max_uploads_per_day: int, now: datetime) -> None:
        """Raise QuotaExceededError unless an upload of candidate_bytes fits today."""
        if self.uploads_today(now) >= max_uploads_per_day:
            logger.info("daily upload cap hit (%d/day)", max_uploads_per_day)
            raise QuotaExceededError(
                f"Daily upload limit reached ({max_uploads_per_day} uploads/day)",
                remaining_bytes=max(0, self.remaining_bytes(max_total_bytes, now)),
            )
        self.check_bytes(candidate_bytes, max_total_bytes, now)
