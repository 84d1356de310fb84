"""逆地理编码解析：缓存 + 同键合并 + 全局限速。"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from location_tracker.domain.tracking_types import Coordinate, Place, RawPlacemark
from location_tracker.services.place_cache import PlaceCache, coordinate_cache_key
from location_tracker.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

PlaceLookup = Callable[[Coordinate], Awaitable[RawPlacemark | None]]


class GeocodingLookupError(RuntimeError):
    """外部查询失败。"""


class GeocodingResolver:
    """把坐标解析为 Place。

    同一缓存键同时最多只有一次外部查询在途，后到的调用者等待同一个任务；
    不同缓存键之间互不阻塞，只有外部查询的发起受全局限速约束。
    """

    def __init__(
        self,
        lookup: PlaceLookup,
        cache: PlaceCache | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._lookup = lookup
        self._cache = cache if cache is not None else PlaceCache()
        self._rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self._in_flight: dict[str, asyncio.Task[Place]] = {}

    @property
    def cache(self) -> PlaceCache:
        return self._cache

    def is_pending(self, coordinate: Coordinate) -> bool:
        return coordinate_cache_key(coordinate) in self._in_flight

    async def resolve(self, coordinate: Coordinate) -> Place:
        """解析坐标；仅在外部查询失败时抛出 GeocodingLookupError。"""

        key = coordinate_cache_key(coordinate)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Place cache hit for %s", key)
            return cached

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._lookup_and_store(key, coordinate))
            self._in_flight[key] = task
        else:
            logger.debug("Joining in-flight lookup for %s", key)

        # 单个等待者被取消时不影响共享查询
        return await asyncio.shield(task)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _lookup_and_store(self, key: str, coordinate: Coordinate) -> Place:
        try:
            waited = await self._rate_limiter.acquire()
            logger.debug("Dispatching lookup for %s after %.3fs wait", key, waited)
            try:
                raw = await self._lookup(coordinate)
            except GeocodingLookupError:
                logger.warning("Lookup failed for %s", key)
                raise
            except Exception as exc:
                logger.warning("Lookup failed for %s: %s", key, exc)
                raise GeocodingLookupError(f"Lookup failed for {key}: {exc}") from exc

            place = build_place(raw)
            self._cache.set(key, place)
            return place
        finally:
            # 在任务结束的同一步内注销，之后到达的调用者会发起新查询
            self._release(key)

    def _release(self, key: str) -> None:
        if self._in_flight.get(key) is asyncio.current_task():
            del self._in_flight[key]


def build_place(raw: RawPlacemark | None) -> Place:
    """原始地标转 Place，无结果时返回空 Place。"""

    if raw is None:
        return Place()
    return Place(name=extract_place_name(raw), address=format_address(raw))


def extract_place_name(raw: RawPlacemark) -> str | None:
    """按优先级挑选显示名称。"""

    name = _normalize_text(raw.name)
    thoroughfare = _normalize_text(raw.thoroughfare)
    sub_thoroughfare = _normalize_text(raw.sub_thoroughfare)
    if (
        name
        and name != thoroughfare
        and (sub_thoroughfare is None or sub_thoroughfare not in name)
    ):
        return name

    for area in raw.areas_of_interest:
        area_name = _normalize_text(area)
        if area_name:
            return area_name

    return _normalize_text(raw.sub_locality)


def format_address(raw: RawPlacemark) -> str | None:
    """拼接格式化地址，空组件直接省略。"""

    components: list[str] = []

    thoroughfare = _normalize_text(raw.thoroughfare)
    sub_thoroughfare = _normalize_text(raw.sub_thoroughfare)
    if thoroughfare and sub_thoroughfare:
        components.append(f"{sub_thoroughfare} {thoroughfare}")
    elif thoroughfare:
        components.append(thoroughfare)

    city_state = [
        part
        for part in (_normalize_text(raw.locality), _normalize_text(raw.administrative_area))
        if part
    ]
    if city_state:
        components.append(", ".join(city_state))

    postal_code = _normalize_text(raw.postal_code)
    if postal_code:
        components.append(postal_code)

    if not components:
        return None
    return ", ".join(components)


def _normalize_text(value: object | None) -> str | None:
    """标准化文本字段。"""

    if value is None:
        return None
    text = str(value).strip()
    return text if text else None
