from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import AlertSyncSettings

Base = declarative_base()


def create_session_factory(settings: AlertSyncSettings | None = None) -> sessionmaker[Session]:
    settings = settings or AlertSyncSettings()
    database_url = settings.database_url
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args, pool_pre_ping=True, future=True)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def verify_connection(session_factory: sessionmaker[Session]) -> None:
    """Open a session and run ``SELECT 1``; raises when the database is unreachable."""

    session = session_factory()
    try:
        session.execute(text("SELECT 1"))
    finally:
        session.close()


def get_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
