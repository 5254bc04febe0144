"""
Settings and photo tables (SQLAlchemy) plus the two read adapters the
search engine consumes:

- SettingsStore.get_setting(key)      -> JSON value | None
- PhotoStore.list_candidates(event_id) -> [CandidatePhoto]
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, List, Optional

from sqlalchemy import BigInteger, Column, String, Text, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import Config
from .domain import CandidatePhoto

logger = logging.getLogger(__name__)

Base = declarative_base()


class SettingModel(Base):
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)  # JSON text


class PhotoModel(Base):
    __tablename__ = "photos"

    id = Column(String, primary_key=True)
    event_id = Column(String, nullable=False, index=True)
    src = Column(Text, nullable=False)  # thumbnail URL or data URL
    original = Column(Text)
    created_at = Column(BigInteger, default=lambda: int(time.time() * 1000))


def make_engine(url: str = Config.DATABASE_URL):
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create all database tables"""
    Base.metadata.create_all(bind=bind or engine)


class SettingsStore:
    """Global key-value settings, values stored as JSON text."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def get_setting(self, key: str) -> Optional[Any]:
        with self.session_factory() as db:
            row = db.get(SettingModel, key)
            if row is None:
                return None
            try:
                return json.loads(row.value)
            except ValueError:
                return row.value

    def save_setting(self, key: str, value: Any):
        with self.session_factory() as db:
            db.merge(SettingModel(key=key, value=json.dumps(value)))
            db.commit()
        logger.info("Saved setting %s", key)


class PhotoStore:
    """Read access to the gallery photos of an event."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def list_candidates(self, event_id: str) -> List[CandidatePhoto]:
        with self.session_factory() as db:
            rows = (
                db.query(PhotoModel)
                .filter(PhotoModel.event_id == event_id)
                .order_by(PhotoModel.created_at, PhotoModel.id)
                .all()
            )
            return [CandidatePhoto(id=row.id, locator=row.src) for row in rows]
