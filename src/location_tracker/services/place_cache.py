"""逆地理编码结果缓存。"""

from __future__ import annotations

from threading import Lock

from location_tracker.domain.tracking_types import Coordinate, Place

CACHE_KEY_PRECISION = 4


def coordinate_cache_key(coordinate: Coordinate, precision: int = CACHE_KEY_PRECISION) -> str:
    """按固定小数位量化坐标生成缓存键。

    精度 4 约等于 11 米网格，同一网格内的坐标共享一个缓存项。
    """

    latitude = round(coordinate.latitude, precision) + 0.0
    longitude = round(coordinate.longitude, precision) + 0.0
    return f"{latitude:.{precision}f},{longitude:.{precision}f}"


class PlaceCache:
    """进程内无界缓存：缓存键 -> Place。"""

    def __init__(self) -> None:
        self._data: dict[str, Place] = {}
        self._lock = Lock()

    def get(self, key: str) -> Place | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, place: Place) -> None:
        with self._lock:
            self._data[key] = place

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
