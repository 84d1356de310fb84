"""定位追踪服务：串行化所有状态变更的唯一所有者。"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Sequence

from location_tracker.clients.nominatim_client import NominatimClient, NominatimConfig
from location_tracker.config import AppConfig
from location_tracker.db.engine import create_schema, create_session_factory, create_sqlite_engine
from location_tracker.domain.tracking_types import (
    Coordinate,
    LocationFix,
    LocationPoint,
    PermissionStatus,
    RemainingTime,
    SensorVisit,
    TrackingMode,
    Visit,
)
from location_tracker.repositories.visit_repository import VisitRepository
from location_tracker.sensors.base import LocationSensor
from location_tracker.services.geocoding_resolver import GeocodingResolver, PlaceLookup
from location_tracker.services.place_cache import PlaceCache
from location_tracker.services.rate_limiter import RateLimiter
from location_tracker.services.tracking_controller import TrackingModeController
from location_tracker.services.visit_tracker import VisitTracker

logger = logging.getLogger(__name__)

SENSOR_ERROR_MESSAGES = {
    "denied": "Location access denied",
    "network": "Network error",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocationTrackingService:
    """组合追踪模式控制器、到访状态机与解析器。

    所有状态只在绑定的事件循环线程上修改；传感器回调可能来自任意线程，
    需通过 post_* 入口投递到该循环。
    """

    def __init__(
        self,
        repository: VisitRepository,
        resolver: GeocodingResolver,
        sensor: LocationSensor,
        auto_off_hours: float = 2.0,
        permission: PermissionStatus = PermissionStatus.NOT_DETERMINED,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.last_error: str | None = None
        self._repository = repository
        self._resolver = resolver
        self.tracker = VisitTracker(repository, resolver, report_error=self._record_error)
        self.controller = TrackingModeController(
            sensor,
            preferences=repository,
            permission=permission,
            auto_off_hours=auto_off_hours,
            clock=clock,
            report_error=self._record_error,
        )
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def mode(self) -> TrackingMode:
        return self.controller.mode

    @property
    def current_visit(self) -> Visit | None:
        return self.tracker.current_visit

    @property
    def current_location(self) -> Coordinate | None:
        fix = self.tracker.last_fix
        return fix.coordinate if fix is not None else None

    def start(self) -> None:
        """绑定当前事件循环并恢复持久化状态。"""

        self._loop = asyncio.get_running_loop()
        self.tracker.restore()
        self.controller.restore()
        logger.info("Location service started in mode %s", self.controller.mode.value)

    async def stop(self) -> None:
        """取消计时器并等待挂起的解析任务。"""

        self.controller.shutdown()
        await self.tracker.drain()

    # 线程安全的传感器入口

    def post_permission_change(self, status: PermissionStatus) -> None:
        self._post(self.handle_permission_change, status)

    def post_visit(self, visit: SensorVisit) -> None:
        self._post(self.handle_visit, visit)

    def post_fixes(self, fixes: Sequence[LocationFix]) -> None:
        self._post(self.handle_fixes, tuple(fixes))

    def post_sensor_error(self, kind: str, message: str) -> None:
        self._post(self.handle_sensor_error, kind, message)

    # 事件循环上的处理函数

    def handle_permission_change(self, status: PermissionStatus) -> None:
        self.controller.handle_permission_change(status)

    def handle_visit(self, visit: SensorVisit) -> Visit | None:
        if self.controller.mode is TrackingMode.DISABLED or not self.controller.has_permission:
            logger.debug("Ignoring visit event while tracking is inactive")
            return None
        return self.tracker.handle_visit(visit)

    def handle_fixes(self, fixes: Sequence[LocationFix]) -> LocationPoint | None:
        continuous = self.controller.is_continuous_active and self.controller.has_permission
        return self.tracker.handle_fixes(fixes, continuous_active=continuous)

    def handle_sensor_error(self, kind: str, message: str) -> None:
        self._record_error(SENSOR_ERROR_MESSAGES.get(kind, message))

    # 用户操作

    def enable_tracking(self) -> bool:
        return self.controller.enable_tracking()

    def disable_tracking(self) -> None:
        self.controller.disable_tracking()

    def enable_continuous_tracking(self) -> bool:
        return self.controller.enable_continuous_tracking()

    def disable_continuous_tracking(self) -> None:
        self.controller.disable_continuous_tracking()

    def remaining_time(self) -> RemainingTime:
        return self.controller.remaining_time()

    def set_auto_off_hours(self, hours: float) -> None:
        self.controller.set_auto_off_hours(hours)

    async def retry_geocoding(self, visit_id: str) -> Visit | None:
        return await self.tracker.retry_geocoding(visit_id)

    def update_visit_notes(self, visit_id: str, notes: str) -> Visit | None:
        return self.tracker.update_notes(visit_id, notes)

    def delete_visit(self, visit_id: str) -> bool:
        return self.tracker.delete_visit(visit_id)

    def clear_all_data(self) -> None:
        self.tracker.clear_all()

    def list_visits(self) -> list[Visit]:
        return self._repository.list_visits()

    def _post(self, handler: Callable[..., object], *args: object) -> None:
        if self._loop is None:
            raise RuntimeError("Location service is not started.")
        self._loop.call_soon_threadsafe(handler, *args)

    def _record_error(self, message: str) -> None:
        logger.error(message)
        self.last_error = message


def build_location_service(
    config: AppConfig,
    sensor: LocationSensor,
    lookup: PlaceLookup | None = None,
    permission: PermissionStatus = PermissionStatus.NOT_DETERMINED,
) -> LocationTrackingService:
    """按配置组装服务。"""

    engine = create_sqlite_engine(config.db_path)
    create_schema(engine)
    repository = VisitRepository(create_session_factory(engine))
    resolver = GeocodingResolver(
        lookup=lookup or NominatimClient(NominatimConfig.from_app_config(config)),
        cache=PlaceCache(),
        rate_limiter=RateLimiter(min_interval_seconds=config.geocode_interval_seconds),
    )
    return LocationTrackingService(
        repository=repository,
        resolver=resolver,
        sensor=sensor,
        auto_off_hours=config.auto_off_hours,
        permission=permission,
    )
