from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import List

from .models import PhotoRecord, StorageAggregate
from .photos import PhotoRegistry

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=30)


class RecycleJanitor:
    def __init__(self, aggregate: StorageAggregate, retention: timedelta = DEFAULT_RETENTION) -> None:
        self.aggregate = aggregate
        self.retention = retention

    def eligible(self, now: datetime) -> List[PhotoRecord]:
        return [p for p in self.aggregate.photos
                if p.deleted_at is not None and now - p.deleted_at >= self.retention]

    def sweep(self, now: datetime) -> List[PhotoRecord]:
        """Purge deleted photos past retention. Returns what was removed."""
        expired = self.eligible(now)
        if not expired:
            return []
        registry = PhotoRegistry(self.aggregate)
        for photo in expired:
            registry.purge(photo.id)
        logger.info("recycle sweep purged %d photos", len(expired))
        return expired
