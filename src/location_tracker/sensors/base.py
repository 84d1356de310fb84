"""定位传感器接口。"""

from __future__ import annotations

from typing import Protocol

BEST_ACCURACY_M = 0.0
CONTINUOUS_DISTANCE_FILTER_M = 10.0


class LocationSensor(Protocol):
    """追踪模式控制器驱动的外部传感器。"""

    def request_authorization(self) -> None: ...

    def start_monitoring_visits(self) -> None: ...

    def stop_monitoring_visits(self) -> None: ...

    def start_monitoring_significant_changes(self) -> None: ...

    def stop_monitoring_significant_changes(self) -> None: ...

    def start_updating_location(self, desired_accuracy_m: float, distance_filter_m: float) -> None: ...

    def stop_updating_location(self) -> None: ...
