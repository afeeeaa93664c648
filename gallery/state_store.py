from __future__ import annotations
import logging
from typing import Optional
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .errors import PersistenceError
from .models import StateDocument, StorageAggregate, utcnow

logger = logging.getLogger(__name__)

AGGREGATE_KEY = "data"


class StateStore:
    """Durable home of the single StorageAggregate document (one SQLite row)."""

    def __init__(self, engine: Engine, key: str = AGGREGATE_KEY) -> None:
        self.engine = engine
        self.key = key

    def load(self) -> Optional[StorageAggregate]:
        try:
            with Session(self.engine) as session:
                row = session.get(StateDocument, self.key)
                body = row.body if row is not None else None
        except SQLAlchemyError as exc:
            logger.exception("failed to load %s", self.key)
            raise PersistenceError() from exc
        if body is None:
            return None
        return StorageAggregate.model_validate_json(body)

    def save(self, aggregate: StorageAggregate) -> None:
        body = aggregate.model_dump_json()
        try:
            with Session(self.engine) as session:
                row = session.get(StateDocument, self.key)
                if row is None:
                    row = StateDocument(key=self.key, body=body)
                else:
                    row.body = body
                    row.updated_at = utcnow()
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("failed to persist %s", self.key)
            raise PersistenceError() from exc
