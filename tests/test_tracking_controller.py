"""Tracking mode controller tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from location_tracker.config import ConfigError
from location_tracker.domain.tracking_types import PermissionStatus, TrackingMode
from location_tracker.repositories.visit_repository import PersistenceError
from location_tracker.sensors.base import BEST_ACCURACY_M, CONTINUOUS_DISTANCE_FILTER_M
from location_tracker.sensors.replay import ReplaySensor
from location_tracker.services.tracking_controller import (
    PREF_AUTO_OFF_HOURS,
    PREF_CONTINUOUS_ENABLED,
    PREF_TRACKING_ENABLED,
    TrackingModeController,
)

START = datetime(2026, 1, 29, 9, 0, tzinfo=timezone.utc)
TINY_HOURS = 0.01 / 3600


class FakePreferences:
    """字典实现的偏好存储。"""

    def __init__(self, values: dict[str, object] | None = None) -> None:
        self.values: dict[str, object] = dict(values or {})
        self.fail_writes = False

    def get_preference(self, key: str) -> object | None:
        return self.values.get(key)

    def set_preference(self, key: str, value: object) -> None:
        if self.fail_writes:
            raise PersistenceError("database is read-only")
        self.values[key] = value


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _build_controller(
    permission: PermissionStatus = PermissionStatus.ALWAYS,
    auto_off_hours: float = 2.0,
    preferences: FakePreferences | None = None,
    clock: FakeClock | None = None,
    errors: list[str] | None = None,
) -> tuple[TrackingModeController, ReplaySensor, FakePreferences]:
    sensor = ReplaySensor()
    preferences = preferences if preferences is not None else FakePreferences()
    controller = TrackingModeController(
        sensor,
        preferences=preferences,
        permission=permission,
        auto_off_hours=auto_off_hours,
        clock=clock or FakeClock(),
        report_error=errors.append if errors is not None else None,
    )
    return controller, sensor, preferences


def test_enable_tracking_without_permission_requests_authorization() -> None:
    controller, sensor, preferences = _build_controller(permission=PermissionStatus.NOT_DETERMINED)

    assert controller.enable_tracking() is False

    assert controller.mode is TrackingMode.DISABLED
    assert controller.is_awaiting_permission is True
    assert sensor.authorization_requests == 1
    assert sensor.monitoring_visits is False
    assert PREF_TRACKING_ENABLED not in preferences.values


def test_permission_grant_completes_pending_enable() -> None:
    controller, sensor, preferences = _build_controller(permission=PermissionStatus.NOT_DETERMINED)
    controller.enable_tracking()

    controller.handle_permission_change(PermissionStatus.WHEN_IN_USE)

    assert controller.mode is TrackingMode.VISIT_TRACKING
    assert controller.is_awaiting_permission is False
    assert sensor.monitoring_visits is True
    assert sensor.monitoring_significant_changes is True
    assert preferences.values[PREF_TRACKING_ENABLED] is True


def test_permission_grant_without_pending_request_keeps_mode() -> None:
    controller, sensor, _ = _build_controller(permission=PermissionStatus.NOT_DETERMINED)

    controller.handle_permission_change(PermissionStatus.ALWAYS)

    assert controller.mode is TrackingMode.DISABLED
    assert sensor.is_idle


def test_enable_and_disable_tracking_toggle_monitoring() -> None:
    controller, sensor, preferences = _build_controller()

    assert controller.enable_tracking() is True
    assert controller.mode is TrackingMode.VISIT_TRACKING
    assert sensor.monitoring_visits is True

    controller.disable_tracking()
    assert controller.mode is TrackingMode.DISABLED
    assert sensor.is_idle
    assert preferences.values[PREF_TRACKING_ENABLED] is False


def test_permission_revoked_stops_sensors_but_keeps_mode() -> None:
    controller, sensor, _ = _build_controller()
    controller.enable_tracking()

    controller.handle_permission_change(PermissionStatus.DENIED)

    assert controller.mode is TrackingMode.VISIT_TRACKING
    assert sensor.is_idle

    controller.handle_permission_change(PermissionStatus.ALWAYS)
    assert sensor.monitoring_visits is True


def test_continuous_requires_permission() -> None:
    controller, sensor, _ = _build_controller(permission=PermissionStatus.DENIED, auto_off_hours=0)

    assert controller.enable_continuous_tracking() is False
    assert controller.mode is TrackingMode.DISABLED
    assert sensor.updating_location is False


def test_continuous_overlays_visit_tracking_and_restores_it() -> None:
    controller, sensor, preferences = _build_controller(auto_off_hours=0)
    controller.enable_tracking()

    assert controller.enable_continuous_tracking() is True
    assert controller.mode is TrackingMode.CONTINUOUS_TRACKING
    assert controller.base_mode is TrackingMode.VISIT_TRACKING
    assert controller.is_tracking_enabled is True
    assert sensor.updating_location is True
    assert sensor.desired_accuracy_m == BEST_ACCURACY_M
    assert sensor.distance_filter_m == CONTINUOUS_DISTANCE_FILTER_M
    assert preferences.values[PREF_CONTINUOUS_ENABLED] is True

    controller.disable_continuous_tracking()
    assert controller.mode is TrackingMode.VISIT_TRACKING
    assert sensor.updating_location is False
    assert sensor.monitoring_visits is True
    assert preferences.values[PREF_CONTINUOUS_ENABLED] is False


def test_continuous_from_disabled_returns_to_disabled() -> None:
    controller, sensor, _ = _build_controller(auto_off_hours=0)

    controller.enable_continuous_tracking()
    controller.disable_continuous_tracking()

    assert controller.mode is TrackingMode.DISABLED
    assert sensor.updating_location is False


def test_disable_tracking_also_ends_continuous() -> None:
    controller, sensor, preferences = _build_controller(auto_off_hours=0)
    controller.enable_tracking()
    controller.enable_continuous_tracking()

    controller.disable_tracking()

    assert controller.mode is TrackingMode.DISABLED
    assert controller.continuous_started_at is None
    assert sensor.is_idle
    assert preferences.values[PREF_CONTINUOUS_ENABLED] is False


def test_remaining_time_counts_down() -> None:
    clock = FakeClock()
    controller, _, _ = _build_controller(clock=clock)

    async def scenario() -> tuple[str, float | None, float | None]:
        controller.enable_continuous_tracking()
        clock.now = START + timedelta(minutes=30)
        remaining = controller.remaining_time()
        clock.now = START + timedelta(hours=3)
        overdue = controller.remaining_time()
        controller.shutdown()
        return remaining.status, remaining.seconds, overdue.seconds

    status, seconds, overdue = asyncio.run(scenario())

    assert status == "counting"
    assert seconds == pytest.approx(90 * 60)
    assert overdue == 0.0


def test_remaining_time_states() -> None:
    controller, _, _ = _build_controller()
    assert controller.remaining_time().status == "not_running"

    unlimited, _, _ = _build_controller(auto_off_hours=0)
    assert unlimited.remaining_time().status == "no_limit"
    unlimited.enable_continuous_tracking()
    assert unlimited.remaining_time().status == "no_limit"
    assert unlimited.auto_off_armed is False


def test_auto_off_timer_restores_base_mode() -> None:
    controller, sensor, preferences = _build_controller(auto_off_hours=TINY_HOURS)

    async def scenario() -> None:
        controller.enable_tracking()
        controller.enable_continuous_tracking()
        assert controller.auto_off_armed is True
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    assert controller.mode is TrackingMode.VISIT_TRACKING
    assert controller.auto_off_armed is False
    assert controller.remaining_time().status == "not_running"
    assert sensor.updating_location is False
    assert preferences.values[PREF_CONTINUOUS_ENABLED] is False


def test_reenabling_continuous_replaces_timer() -> None:
    controller, _, _ = _build_controller(auto_off_hours=2.0)

    async def scenario() -> bool:
        controller.enable_continuous_tracking()
        first_handle = controller._auto_off_handle
        controller.enable_continuous_tracking()
        second_handle = controller._auto_off_handle
        assert first_handle is not None and second_handle is not first_handle
        cancelled = first_handle.cancelled()
        controller.shutdown()
        return cancelled

    assert asyncio.run(scenario()) is True
    assert controller.mode is TrackingMode.CONTINUOUS_TRACKING


def test_manual_disable_cancels_timer() -> None:
    controller, _, _ = _build_controller(auto_off_hours=TINY_HOURS)

    async def scenario() -> None:
        controller.enable_continuous_tracking()
        controller.disable_continuous_tracking()
        controller.enable_tracking()
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    assert controller.mode is TrackingMode.VISIT_TRACKING


def test_set_auto_off_hours_validates_and_persists() -> None:
    controller, _, preferences = _build_controller()

    controller.set_auto_off_hours(4)
    assert controller.auto_off_hours == 4.0
    assert preferences.values[PREF_AUTO_OFF_HOURS] == 4.0

    with pytest.raises(ConfigError):
        controller.set_auto_off_hours(-1)
    assert controller.auto_off_hours == 4.0


def test_restore_reapplies_persisted_state() -> None:
    preferences = FakePreferences(
        {
            PREF_TRACKING_ENABLED: True,
            PREF_CONTINUOUS_ENABLED: True,
            PREF_AUTO_OFF_HOURS: 0,
        }
    )
    controller, sensor, _ = _build_controller(preferences=preferences)

    controller.restore()

    assert controller.auto_off_hours == 0
    assert controller.mode is TrackingMode.CONTINUOUS_TRACKING
    assert controller.base_mode is TrackingMode.VISIT_TRACKING
    assert sensor.monitoring_visits is True
    assert sensor.updating_location is True


def test_restore_without_permission_waits_for_grant() -> None:
    preferences = FakePreferences({PREF_TRACKING_ENABLED: True, PREF_CONTINUOUS_ENABLED: True})
    controller, sensor, _ = _build_controller(
        permission=PermissionStatus.NOT_DETERMINED,
        preferences=preferences,
    )

    controller.restore()

    assert controller.mode is TrackingMode.DISABLED
    assert controller.is_awaiting_permission is True
    assert sensor.is_idle
    assert preferences.values[PREF_CONTINUOUS_ENABLED] is False

    controller.handle_permission_change(PermissionStatus.ALWAYS)
    assert controller.mode is TrackingMode.VISIT_TRACKING


def test_restore_ignores_invalid_stored_hours() -> None:
    preferences = FakePreferences({PREF_AUTO_OFF_HOURS: "soon"})
    controller, _, _ = _build_controller(preferences=preferences, auto_off_hours=3.0)

    controller.restore()

    assert controller.auto_off_hours == 3.0


def test_preference_write_failure_is_reported() -> None:
    errors: list[str] = []
    preferences = FakePreferences()
    preferences.fail_writes = True
    controller, _, _ = _build_controller(preferences=preferences, errors=errors)

    assert controller.enable_tracking() is True

    assert controller.mode is TrackingMode.VISIT_TRACKING
    assert errors == [f"Failed to save preference {PREF_TRACKING_ENABLED}: database is read-only"]


def test_negative_auto_off_hours_rejected_at_construction() -> None:
    with pytest.raises(ConfigError):
        _build_controller(auto_off_hours=-0.5)
