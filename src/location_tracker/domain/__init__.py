"""Domain types."""

from location_tracker.domain.tracking_types import (
    DISTANT_FUTURE,
    DISTANT_PAST,
    Coordinate,
    HasCurrentVisit,
    LocationFix,
    LocationPoint,
    NoCurrentVisit,
    PermissionStatus,
    Place,
    RawPlacemark,
    RemainingTime,
    SensorVisit,
    TrackingMode,
    Visit,
    VisitState,
)

__all__ = [
    "DISTANT_FUTURE",
    "DISTANT_PAST",
    "Coordinate",
    "HasCurrentVisit",
    "LocationFix",
    "LocationPoint",
    "NoCurrentVisit",
    "PermissionStatus",
    "Place",
    "RawPlacemark",
    "RemainingTime",
    "SensorVisit",
    "TrackingMode",
    "Visit",
    "VisitState",
]
