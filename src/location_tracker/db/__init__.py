"""Database helpers."""

from location_tracker.db.engine import (
    create_schema,
    create_session_factory,
    create_sqlite_engine,
    sqlite_url,
)
from location_tracker.db.models import Base, LocationPointRecord, PreferenceRecord, VisitRecord

__all__ = [
    "Base",
    "LocationPointRecord",
    "PreferenceRecord",
    "VisitRecord",
    "create_schema",
    "create_session_factory",
    "create_sqlite_engine",
    "sqlite_url",
]
