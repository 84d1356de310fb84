"""定位追踪领域类型。"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal

DISTANT_PAST = datetime.min.replace(tzinfo=timezone.utc)
DISTANT_FUTURE = datetime.max.replace(tzinfo=timezone.utc)
UNKNOWN_LOCATION_NAME = "Unknown Location"


class PermissionStatus(str, Enum):
    """定位授权状态。"""

    NOT_DETERMINED = "not_determined"
    RESTRICTED = "restricted"
    DENIED = "denied"
    WHEN_IN_USE = "when_in_use"
    ALWAYS = "always"

    @property
    def allows_tracking(self) -> bool:
        return self in (PermissionStatus.WHEN_IN_USE, PermissionStatus.ALWAYS)


class TrackingMode(str, Enum):
    """追踪模式。"""

    DISABLED = "disabled"
    VISIT_TRACKING = "visit_tracking"
    CONTINUOUS_TRACKING = "continuous_tracking"


@dataclass(frozen=True, slots=True)
class Coordinate:
    """经纬度坐标（度）。"""

    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class Place:
    """逆地理编码结果，两项都可能缺失。"""

    name: str | None = None
    address: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.name is None and self.address is None


@dataclass(frozen=True, slots=True)
class RawPlacemark:
    """查询服务返回的原始地标字段。"""

    name: str | None = None
    thoroughfare: str | None = None
    sub_thoroughfare: str | None = None
    areas_of_interest: tuple[str, ...] = ()
    sub_locality: str | None = None
    locality: str | None = None
    administrative_area: str | None = None
    postal_code: str | None = None


@dataclass(slots=True)
class Visit:
    """一次到访记录，departed_at 为空表示仍在停留。"""

    coordinate: Coordinate
    arrived_at: datetime
    departed_at: datetime | None = None
    location_name: str | None = None
    address: str | None = None
    notes: str | None = None
    geocoding_completed: bool = False
    visit_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_current(self) -> bool:
        return self.departed_at is None

    @property
    def duration(self) -> timedelta | None:
        if self.departed_at is None:
            return None
        return self.departed_at - self.arrived_at

    @property
    def duration_minutes(self) -> float | None:
        duration = self.duration
        if duration is None:
            return None
        return duration.total_seconds() / 60.0

    @property
    def display_name(self) -> str:
        return self.location_name or self.address or UNKNOWN_LOCATION_NAME

    def apply_place(self, place: Place) -> None:
        """写入解析结果并标记已完成。"""

        self.location_name = place.name
        self.address = place.address
        self.geocoding_completed = True


@dataclass(frozen=True, slots=True)
class LocationPoint:
    """连续追踪模式下接受的单个定位点。"""

    coordinate: Coordinate
    timestamp: datetime
    horizontal_accuracy: float
    altitude: float | None = None
    speed: float | None = None
    point_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True, slots=True)
class SensorVisit:
    """传感器上报的到访通知。

    arrival_at 为 DISTANT_PAST 表示到达时间未知；departure_at 为
    DISTANT_FUTURE 表示尚未离开（即到达事件）。
    """

    coordinate: Coordinate
    arrival_at: datetime
    departure_at: datetime

    @property
    def is_departure(self) -> bool:
        return self.departure_at != DISTANT_FUTURE

    @property
    def has_known_arrival(self) -> bool:
        return self.arrival_at != DISTANT_PAST


@dataclass(frozen=True, slots=True)
class LocationFix:
    """传感器上报的单次定位。"""

    coordinate: Coordinate
    timestamp: datetime
    horizontal_accuracy: float
    altitude: float | None = None
    speed: float | None = None


@dataclass(frozen=True, slots=True)
class NoCurrentVisit:
    """状态：没有进行中的到访。"""

    kind: Literal["none"] = "none"


@dataclass(frozen=True, slots=True)
class HasCurrentVisit:
    """状态：存在唯一进行中的到访。"""

    visit: Visit
    kind: Literal["current"] = "current"


VisitState = NoCurrentVisit | HasCurrentVisit


@dataclass(frozen=True, slots=True)
class RemainingTime:
    """连续追踪剩余时间。"""

    status: Literal["not_running", "no_limit", "counting"]
    seconds: float | None = None

    @property
    def is_limited(self) -> bool:
        return self.status == "counting"


NOT_RUNNING = RemainingTime(status="not_running")
NO_LIMIT = RemainingTime(status="no_limit")
