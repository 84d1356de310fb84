from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from location_tracker.db.models import Base


def sqlite_url(db_path: Path) -> str:
    # SQLAlchemy expects a file path without URL encoding for local SQLite.
    return f"sqlite+pysqlite:///{db_path}"


def create_sqlite_engine(db_path: Path) -> Engine:
    return create_engine(sqlite_url(db_path), future=True)


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
