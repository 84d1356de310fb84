"""追踪模式控制：权限门控、模式切换与连续追踪自动关闭。"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from location_tracker.config import DEFAULT_AUTO_OFF_HOURS, ConfigError, validate_auto_off_hours
from location_tracker.domain.tracking_types import (
    NO_LIMIT,
    NOT_RUNNING,
    PermissionStatus,
    RemainingTime,
    TrackingMode,
)
from location_tracker.repositories.visit_repository import PersistenceError, VisitRepository
from location_tracker.sensors.base import (
    BEST_ACCURACY_M,
    CONTINUOUS_DISTANCE_FILTER_M,
    LocationSensor,
)

logger = logging.getLogger(__name__)

PREF_TRACKING_ENABLED = "tracking_enabled"
PREF_CONTINUOUS_ENABLED = "continuous_tracking_enabled"
PREF_AUTO_OFF_HOURS = "continuous_tracking_auto_off_hours"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackingModeController:
    """管理 Disabled / VisitTracking / ContinuousTracking 三种模式。

    ContinuousTracking 是叠加在基础模式之上的临时模式，关闭后回到进入前的
    基础模式。所有传感器启动都以定位授权为前提。
    """

    def __init__(
        self,
        sensor: LocationSensor,
        preferences: VisitRepository | None = None,
        permission: PermissionStatus = PermissionStatus.NOT_DETERMINED,
        auto_off_hours: float = DEFAULT_AUTO_OFF_HOURS,
        clock: Callable[[], datetime] = _utcnow,
        report_error: Callable[[str], None] | None = None,
    ) -> None:
        self._sensor = sensor
        self._preferences = preferences
        self._permission = permission
        self._auto_off_hours = validate_auto_off_hours(auto_off_hours)
        self._clock = clock
        self._report_error = report_error or logger.error
        self._mode = TrackingMode.DISABLED
        self._resume_mode = TrackingMode.DISABLED
        self._awaiting_permission = False
        self._continuous_started_at: datetime | None = None
        self._auto_off_handle: asyncio.TimerHandle | None = None

    @property
    def mode(self) -> TrackingMode:
        return self._mode

    @property
    def base_mode(self) -> TrackingMode:
        """不含连续追踪叠加层的基础模式。"""

        if self._mode is TrackingMode.CONTINUOUS_TRACKING:
            return self._resume_mode
        return self._mode

    @property
    def permission(self) -> PermissionStatus:
        return self._permission

    @property
    def has_permission(self) -> bool:
        return self._permission.allows_tracking

    @property
    def is_tracking_enabled(self) -> bool:
        return self.base_mode is TrackingMode.VISIT_TRACKING

    @property
    def is_continuous_active(self) -> bool:
        return self._mode is TrackingMode.CONTINUOUS_TRACKING

    @property
    def is_awaiting_permission(self) -> bool:
        return self._awaiting_permission

    @property
    def auto_off_hours(self) -> float:
        return self._auto_off_hours

    @property
    def continuous_started_at(self) -> datetime | None:
        return self._continuous_started_at

    @property
    def auto_off_armed(self) -> bool:
        return self._auto_off_handle is not None

    def restore(self) -> None:
        """按持久化偏好恢复启动状态。"""

        if self._preferences is None:
            return

        stored_hours = self._read_preference(PREF_AUTO_OFF_HOURS)
        if stored_hours is not None:
            try:
                self._auto_off_hours = validate_auto_off_hours(stored_hours)
            except (ConfigError, TypeError, ValueError):
                logger.warning("Ignoring invalid stored auto-off hours: %r", stored_hours)

        if self._read_preference(PREF_TRACKING_ENABLED):
            if self.has_permission:
                self._set_base_mode(TrackingMode.VISIT_TRACKING)
            else:
                self._awaiting_permission = True
            self._apply_monitoring()

        if self._read_preference(PREF_CONTINUOUS_ENABLED):
            if not self.enable_continuous_tracking():
                self._write_preference(PREF_CONTINUOUS_ENABLED, False)

    def enable_tracking(self) -> bool:
        """开启基础追踪；无授权时发起授权请求，模式保持不变。"""

        if not self.has_permission:
            logger.info("Tracking requested without permission, requesting authorization")
            self._awaiting_permission = True
            self._sensor.request_authorization()
            return False

        self._awaiting_permission = False
        self._set_base_mode(TrackingMode.VISIT_TRACKING)
        self._write_preference(PREF_TRACKING_ENABLED, True)
        self._apply_monitoring()
        return True

    def disable_tracking(self) -> None:
        """无条件关闭追踪，同时强制关闭连续追踪。"""

        self._cancel_auto_off()
        self._continuous_started_at = None
        self._awaiting_permission = False
        self._mode = TrackingMode.DISABLED
        self._resume_mode = TrackingMode.DISABLED
        self._write_preference(PREF_TRACKING_ENABLED, False)
        self._write_preference(PREF_CONTINUOUS_ENABLED, False)
        self._apply_monitoring()
        logger.info("Tracking disabled")

    def enable_continuous_tracking(self) -> bool:
        """开启高精度连续追踪并按设置启动自动关闭计时。"""

        if not self.has_permission:
            return False

        if self._mode is not TrackingMode.CONTINUOUS_TRACKING:
            self._resume_mode = self._mode
            self._mode = TrackingMode.CONTINUOUS_TRACKING
        self._continuous_started_at = self._clock()
        self._write_preference(PREF_CONTINUOUS_ENABLED, True)
        self._sensor.start_updating_location(BEST_ACCURACY_M, CONTINUOUS_DISTANCE_FILTER_M)

        self._cancel_auto_off()
        if self._auto_off_hours > 0:
            delay = self._auto_off_hours * 3600
            self._auto_off_handle = asyncio.get_running_loop().call_later(
                delay, self._on_auto_off
            )
            logger.info("Continuous tracking enabled, auto-off in %.0fs", delay)
        else:
            logger.info("Continuous tracking enabled without auto-off")
        return True

    def disable_continuous_tracking(self) -> None:
        """关闭连续追踪，基础追踪仍开启时恢复到访监控。"""

        self._cancel_auto_off()
        self._continuous_started_at = None
        if self._mode is TrackingMode.CONTINUOUS_TRACKING:
            self._mode = self._resume_mode
            self._resume_mode = TrackingMode.DISABLED
        self._write_preference(PREF_CONTINUOUS_ENABLED, False)
        self._sensor.stop_updating_location()

        if self._mode is TrackingMode.VISIT_TRACKING:
            self._apply_monitoring()
        logger.info("Continuous tracking disabled, mode is now %s", self._mode.value)

    def remaining_time(self) -> RemainingTime:
        """连续追踪剩余时间。"""

        if self._auto_off_hours == 0:
            return NO_LIMIT
        if self._continuous_started_at is None:
            return NOT_RUNNING

        elapsed = (self._clock() - self._continuous_started_at).total_seconds()
        total = self._auto_off_hours * 3600
        return RemainingTime(status="counting", seconds=max(0.0, total - elapsed))

    def set_auto_off_hours(self, hours: float) -> None:
        """保存自动关闭时长，下次开启连续追踪时生效。"""

        self._auto_off_hours = validate_auto_off_hours(hours)
        self._write_preference(PREF_AUTO_OFF_HOURS, self._auto_off_hours)

    def handle_permission_change(self, status: PermissionStatus) -> None:
        """授权变化回调。"""

        self._permission = status
        logger.info("Location permission changed to %s", status.value)
        if self.has_permission and self._awaiting_permission:
            self._awaiting_permission = False
            if self.base_mode is TrackingMode.DISABLED:
                self._set_base_mode(TrackingMode.VISIT_TRACKING)
                self._write_preference(PREF_TRACKING_ENABLED, True)
        self._apply_monitoring()

    def shutdown(self) -> None:
        """取消计时器，不改变持久化状态。"""

        self._cancel_auto_off()

    def _on_auto_off(self) -> None:
        self._auto_off_handle = None
        logger.info("Continuous tracking auto-off timer fired")
        self.disable_continuous_tracking()

    def _cancel_auto_off(self) -> None:
        if self._auto_off_handle is not None:
            self._auto_off_handle.cancel()
            self._auto_off_handle = None

    def _set_base_mode(self, mode: TrackingMode) -> None:
        if self._mode is TrackingMode.CONTINUOUS_TRACKING:
            self._resume_mode = mode
        else:
            self._mode = mode

    def _apply_monitoring(self) -> None:
        if not self.has_permission or self._mode is TrackingMode.DISABLED:
            self._sensor.stop_monitoring_visits()
            self._sensor.stop_monitoring_significant_changes()
            self._sensor.stop_updating_location()
            return

        if self.base_mode is TrackingMode.VISIT_TRACKING:
            self._sensor.start_monitoring_visits()
            self._sensor.start_monitoring_significant_changes()
        else:
            self._sensor.stop_monitoring_visits()
            self._sensor.stop_monitoring_significant_changes()

        if self._mode is TrackingMode.CONTINUOUS_TRACKING:
            self._sensor.start_updating_location(BEST_ACCURACY_M, CONTINUOUS_DISTANCE_FILTER_M)

    def _read_preference(self, key: str) -> object | None:
        if self._preferences is None:
            return None
        try:
            return self._preferences.get_preference(key)
        except PersistenceError as exc:
            self._report_error(f"Failed to read preference {key}: {exc}")
            return None

    def _write_preference(self, key: str, value: object) -> None:
        if self._preferences is None:
            return
        try:
            self._preferences.set_preference(key, value)
        except PersistenceError as exc:
            self._report_error(f"Failed to save preference {key}: {exc}")
