from __future__ import annotations

import json
from copy import deepcopy
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .models import SyncSettings

Base = declarative_base()

SETTINGS_RECORD = "readwisereader"


class SettingsModel(Base):
    __tablename__ = "settings"
    name = Column(String, primary_key=True)
    payload = Column(Text)
    updated_at = Column(DateTime)


class SettingsRepository:
    """
    Persistence boundary for the sync state. The whole record is read and
    written at once; callers save after every mutation.
    """

    def load(self) -> SyncSettings:
        raise NotImplementedError

    def save(self, settings: SyncSettings) -> None:
        raise NotImplementedError


class InMemorySettingsRepository(SettingsRepository):
    """
    In-memory store for local runs and tests. Keeps copies so callers
    cannot mutate the stored record without saving.
    """

    def __init__(self, initial: Optional[SyncSettings] = None):
        self.records: Dict[str, SyncSettings] = {}
        self.save_count = 0
        if initial is not None:
            self.records[SETTINGS_RECORD] = deepcopy(initial)

    def load(self) -> SyncSettings:
        stored = self.records.get(SETTINGS_RECORD)
        return deepcopy(stored) if stored else SyncSettings()

    def save(self, settings: SyncSettings) -> None:
        self.records[SETTINGS_RECORD] = deepcopy(settings)
        self.save_count += 1


class SqlAlchemySettingsRepository(SettingsRepository):
    """
    SQL-backed store using SQLAlchemy. One row per record name with a JSON
    payload; each save replaces the row inside a single transaction.
    """

    def __init__(self, database_url: str, record_name: str = SETTINGS_RECORD):
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)
        self.record_name = record_name

    def _session(self) -> Session:
        return self.SessionLocal()

    def load(self) -> SyncSettings:
        with self._session() as session:
            model = session.get(SettingsModel, self.record_name)
            if not model or not model.payload:
                return SyncSettings()
            return SyncSettings.from_dict(json.loads(model.payload))

    def save(self, settings: SyncSettings) -> None:
        with self._session() as session:
            model = SettingsModel(
                name=self.record_name,
                payload=json.dumps(settings.to_dict(), ensure_ascii=False),
                updated_at=datetime.utcnow(),
            )
            session.merge(model)
            session.commit()
