from __future__ import annotations
import os
from functools import lru_cache
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from .config import get_settings
from . import models  # noqa: F401  registers the tables on SQLModel.metadata


@lru_cache
def get_engine() -> Engine:
    path = get_settings().db_path
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    return engine

def get_session():
    with Session(get_engine()) as session:
        yield session
