"""到访与定位点数据仓储。"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from location_tracker.db.models import LocationPointRecord, PreferenceRecord, VisitRecord
from location_tracker.domain.tracking_types import Coordinate, LocationPoint, Visit

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """持久化失败。"""


class VisitRepository:
    """封装到访、定位点与偏好的读写。

    upsert_visit / create_location_point 只登记变更，save 在新会话中统一提交。
    提交失败时挂起的变更被丢弃，内存中的状态不受影响。
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.05,
    ) -> None:
        self._session_factory = session_factory
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._pending_visits: dict[str, Visit] = {}
        self._pending_points: list[LocationPoint] = []

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._pending_visits or self._pending_points)

    def upsert_visit(self, visit: Visit) -> None:
        """登记新增或覆盖到访记录。"""

        self._pending_visits[visit.visit_id] = visit

    def create_location_point(self, point: LocationPoint) -> None:
        """登记新增定位点。"""

        self._pending_points.append(point)

    def save(self) -> None:
        """提交挂起的变更，SQLite 锁冲突时重试。"""

        if not self.has_pending_changes:
            return

        visits = list(self._pending_visits.values())
        points = list(self._pending_points)
        self._pending_visits.clear()
        self._pending_points.clear()

        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                self._commit_once(visits, points)
                return
            except OperationalError as exc:
                if not self._is_retryable(exc) or attempt >= self.max_retries:
                    raise PersistenceError(
                        f"SQLite write failed after {attempt + 1} attempt(s): {exc}"
                    ) from exc
                sleep_seconds = self.retry_backoff_seconds * (attempt + 1)
                logger.debug("SQLite busy, retrying save in %.2fs", sleep_seconds)
                time.sleep(sleep_seconds)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"SQLite write failed: {exc}") from exc

    def get_visit(self, visit_id: str) -> Visit | None:
        with self._read_session() as session:
            record = session.get(VisitRecord, visit_id)
            return _record_to_visit(record) if record is not None else None

    def list_visits(self, newest_first: bool = True) -> list[Visit]:
        """按到达时间列出全部到访。"""

        order = VisitRecord.arrived_at.desc() if newest_first else VisitRecord.arrived_at.asc()
        with self._read_session() as session:
            records = session.scalars(select(VisitRecord).order_by(order)).all()
            return [_record_to_visit(record) for record in records]

    def find_open_visits(self) -> list[Visit]:
        """查询未离开的到访，最新的在前。"""

        stmt = (
            select(VisitRecord)
            .where(VisitRecord.departed_at.is_(None))
            .order_by(VisitRecord.arrived_at.desc())
        )
        with self._read_session() as session:
            return [_record_to_visit(record) for record in session.scalars(stmt).all()]

    def list_location_points(self) -> list[LocationPoint]:
        stmt = select(LocationPointRecord).order_by(LocationPointRecord.timestamp.asc())
        with self._read_session() as session:
            return [_record_to_point(record) for record in session.scalars(stmt).all()]

    def delete_visit(self, visit_id: str) -> bool:
        """删除单条到访，返回是否存在。"""

        self._pending_visits.pop(visit_id, None)
        try:
            with self._session_factory() as session:
                record = session.get(VisitRecord, visit_id)
                if record is None:
                    return False
                session.delete(record)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"SQLite delete failed: {exc}") from exc
        return True

    def clear_all(self) -> None:
        """删除全部到访与定位点。"""

        self._pending_visits.clear()
        self._pending_points.clear()
        try:
            with self._session_factory() as session:
                session.execute(delete(VisitRecord))
                session.execute(delete(LocationPointRecord))
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"SQLite clear failed: {exc}") from exc

    def get_preference(self, key: str) -> Any | None:
        with self._read_session() as session:
            record = session.get(PreferenceRecord, key)
            if record is None:
                return None
            return json.loads(record.value)

    def set_preference(self, key: str, value: Any) -> None:
        try:
            with self._session_factory() as session:
                session.merge(PreferenceRecord(key=key, value=json.dumps(value)))
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"SQLite preference write failed: {exc}") from exc

    def _commit_once(self, visits: list[Visit], points: list[LocationPoint]) -> None:
        with self._session_factory() as session:
            for visit in visits:
                session.merge(_visit_to_record(visit))
            for point in points:
                session.add(_point_to_record(point))
            session.commit()

    def _read_session(self) -> "_ReadSession":
        return _ReadSession(self._session_factory)

    @staticmethod
    def _is_retryable(exc: OperationalError) -> bool:
        """判断是否可重试。"""

        message = str(exc).lower()
        return "locked" in message or "busy" in message


class _ReadSession:
    """只读会话，把 SQLAlchemy 异常统一转为 PersistenceError。"""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session = session_factory()

    def __enter__(self) -> Session:
        return self._session

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._session.close()
        if exc is not None and isinstance(exc, SQLAlchemyError):
            raise PersistenceError(f"SQLite query failed: {exc}") from exc
        return False


def to_epoch_seconds(value: datetime) -> float:
    """时区时间转 Unix 秒。"""

    return value.astimezone(timezone.utc).timestamp()


def from_epoch_seconds(value: float) -> datetime:
    """Unix 秒转 UTC 时间。"""

    return datetime.fromtimestamp(value, tz=timezone.utc)


def _visit_to_record(visit: Visit) -> VisitRecord:
    departed_at = visit.departed_at
    return VisitRecord(
        id=visit.visit_id,
        latitude=visit.coordinate.latitude,
        longitude=visit.coordinate.longitude,
        arrived_at=to_epoch_seconds(visit.arrived_at),
        departed_at=to_epoch_seconds(departed_at) if departed_at is not None else None,
        location_name=visit.location_name,
        address=visit.address,
        notes=visit.notes,
        geocoding_completed=visit.geocoding_completed,
    )


def _record_to_visit(record: VisitRecord) -> Visit:
    return Visit(
        visit_id=record.id,
        coordinate=Coordinate(record.latitude, record.longitude),
        arrived_at=from_epoch_seconds(record.arrived_at),
        departed_at=(
            from_epoch_seconds(record.departed_at) if record.departed_at is not None else None
        ),
        location_name=record.location_name,
        address=record.address,
        notes=record.notes,
        geocoding_completed=bool(record.geocoding_completed),
    )


def _point_to_record(point: LocationPoint) -> LocationPointRecord:
    return LocationPointRecord(
        id=point.point_id,
        latitude=point.coordinate.latitude,
        longitude=point.coordinate.longitude,
        timestamp=to_epoch_seconds(point.timestamp),
        altitude=point.altitude,
        speed=point.speed,
        horizontal_accuracy=point.horizontal_accuracy,
    )


def _record_to_point(record: LocationPointRecord) -> LocationPoint:
    return LocationPoint(
        point_id=record.id,
        coordinate=Coordinate(record.latitude, record.longitude),
        timestamp=from_epoch_seconds(record.timestamp),
        altitude=record.altitude,
        speed=record.speed,
        horizontal_accuracy=record.horizontal_accuracy,
    )
