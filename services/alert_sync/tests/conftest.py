from __future__ import annotations

from collections.abc import Iterator

import pytest
import sqlalchemy
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from services.alert_sync.app.database import Base
from services.alert_sync.app.repository import AlertRepository


@pytest.fixture()
def in_memory_session_factory() -> Iterator[sessionmaker[Session]]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=sqlalchemy.pool.StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture()
def session(in_memory_session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = in_memory_session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def repository() -> AlertRepository:
    return AlertRepository()
