"""记录型传感器与 JSON Lines 事件日志解析。"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from location_tracker.domain.tracking_types import (
    DISTANT_FUTURE,
    DISTANT_PAST,
    Coordinate,
    LocationFix,
    PermissionStatus,
    SensorVisit,
)

CommandName = Literal[
    "enable_tracking",
    "disable_tracking",
    "enable_continuous",
    "disable_continuous",
]
COMMAND_NAMES: frozenset[str] = frozenset(
    {"enable_tracking", "disable_tracking", "enable_continuous", "disable_continuous"}
)


@dataclass(slots=True)
class ReplaySensor:
    """不接硬件的传感器，只记录控制器要求的监控状态。"""

    monitoring_visits: bool = False
    monitoring_significant_changes: bool = False
    updating_location: bool = False
    desired_accuracy_m: float | None = None
    distance_filter_m: float | None = None
    authorization_requests: int = 0
    calls: list[str] = field(default_factory=list)

    def request_authorization(self) -> None:
        self.authorization_requests += 1
        self.calls.append("request_authorization")

    def start_monitoring_visits(self) -> None:
        self.monitoring_visits = True
        self.calls.append("start_monitoring_visits")

    def stop_monitoring_visits(self) -> None:
        self.monitoring_visits = False
        self.calls.append("stop_monitoring_visits")

    def start_monitoring_significant_changes(self) -> None:
        self.monitoring_significant_changes = True
        self.calls.append("start_monitoring_significant_changes")

    def stop_monitoring_significant_changes(self) -> None:
        self.monitoring_significant_changes = False
        self.calls.append("stop_monitoring_significant_changes")

    def start_updating_location(self, desired_accuracy_m: float, distance_filter_m: float) -> None:
        self.updating_location = True
        self.desired_accuracy_m = desired_accuracy_m
        self.distance_filter_m = distance_filter_m
        self.calls.append("start_updating_location")

    def stop_updating_location(self) -> None:
        self.updating_location = False
        self.calls.append("stop_updating_location")

    @property
    def is_idle(self) -> bool:
        return not (
            self.monitoring_visits
            or self.monitoring_significant_changes
            or self.updating_location
        )


@dataclass(frozen=True, slots=True)
class PermissionEvent:
    status: PermissionStatus


@dataclass(frozen=True, slots=True)
class VisitEvent:
    visit: SensorVisit


@dataclass(frozen=True, slots=True)
class FixesEvent:
    fixes: tuple[LocationFix, ...]


@dataclass(frozen=True, slots=True)
class CommandEvent:
    name: CommandName


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    kind: str
    message: str


SensorEvent = PermissionEvent | VisitEvent | FixesEvent | CommandEvent | ErrorEvent


def load_event_log(path: str | Path) -> list[SensorEvent]:
    """读取事件日志文件，空行与 # 开头的行被跳过。"""

    log_path = Path(path).expanduser()
    try:
        text = log_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Unable to read event log {log_path}: {exc}") from exc

    events: list[SensorEvent] = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        events.append(parse_event_line(stripped, line_no))
    return events


def parse_event_line(line: str, line_no: int = 1) -> SensorEvent:
    """解析单行事件。"""

    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Line {line_no}: invalid JSON ({exc.msg})") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Line {line_no}: event must be a JSON object")

    try:
        return _parse_event(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Line {line_no}: {exc}") from exc


def _parse_event(payload: dict[str, Any]) -> SensorEvent:
    event_type = payload.get("type")
    if event_type == "permission":
        return PermissionEvent(status=PermissionStatus(payload["status"]))
    if event_type == "visit":
        arrival = payload.get("arrival")
        departure = payload.get("departure")
        return VisitEvent(
            visit=SensorVisit(
                coordinate=_parse_coordinate(payload),
                arrival_at=_parse_time(arrival) if arrival is not None else DISTANT_PAST,
                departure_at=_parse_time(departure) if departure is not None else DISTANT_FUTURE,
            )
        )
    if event_type == "fixes":
        raw_fixes = payload["fixes"]
        if not isinstance(raw_fixes, list):
            raise ValueError("fixes must be a list")
        return FixesEvent(fixes=tuple(_parse_fix(item) for item in raw_fixes))
    if event_type == "command":
        name = payload["name"]
        if name not in COMMAND_NAMES:
            raise ValueError(f"unknown command {name!r}")
        return CommandEvent(name=name)
    if event_type == "error":
        return ErrorEvent(kind=str(payload.get("kind", "")), message=str(payload.get("message", "")))
    raise ValueError(f"unknown event type {event_type!r}")


def _parse_fix(item: Any) -> LocationFix:
    if not isinstance(item, dict):
        raise ValueError("fix must be a JSON object")
    return LocationFix(
        coordinate=_parse_coordinate(item),
        timestamp=_parse_time(item["timestamp"]),
        horizontal_accuracy=float(item["horizontal_accuracy"]),
        altitude=_optional_float(item.get("altitude")),
        speed=_optional_float(item.get("speed")),
    )


def _parse_coordinate(payload: dict[str, Any]) -> Coordinate:
    return Coordinate(latitude=float(payload["latitude"]), longitude=float(payload["longitude"]))


def _parse_time(value: Any) -> datetime:
    """解析 ISO 8601 时间，无时区时按 UTC。"""

    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)
