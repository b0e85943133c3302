from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from master_import.bulk.orchestrator import ImportOrchestrator
from master_import.bulk.registry import build_default_registry
from master_import.core.config import ImportConfig
from master_import.db import models
from master_import.db.session import configure_sqlite


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 1, 10, 8, 0, 0)

    def __call__(self):
        return self.now


@pytest.fixture()
def db_session(tmp_path, monkeypatch):
    monkeypatch.setenv("LOCAL_STORAGE", "1")
    monkeypatch.setenv("LOCAL_STORAGE_DIR", str(tmp_path / "storage"))
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    models.Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = SessionLocal()
    yield db
    db.close()
    engine.dispose()


@pytest.fixture()
def registry(db_session):
    registry = build_default_registry()
    registry.discover_all(db_session)
    return registry


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def orchestrator(registry, clock):
    return ImportOrchestrator(registry, ImportConfig(), clock=clock)
