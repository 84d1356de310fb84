"""Geocoding resolver tests."""

from __future__ import annotations

import asyncio

import pytest

from location_tracker.domain.tracking_types import Coordinate, Place, RawPlacemark
from location_tracker.services.geocoding_resolver import GeocodingLookupError, GeocodingResolver
from location_tracker.services.place_cache import PlaceCache, coordinate_cache_key
from location_tracker.services.rate_limiter import RateLimiter

CAFE_PLACEMARK = RawPlacemark(
    name="示例咖啡馆",
    thoroughfare="Example Street",
    sub_thoroughfare="12",
    locality="Springfield",
    administrative_area="IL",
    postal_code="62701",
)


class FakeClock:
    """单调时钟替身，sleep 直接推进时间。"""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLookup:
    """记录调用的查询替身。"""

    def __init__(
        self,
        result: RawPlacemark | None = CAFE_PLACEMARK,
        clock: FakeClock | None = None,
        gate: asyncio.Event | None = None,
        error: Exception | None = None,
    ) -> None:
        self.result = result
        self.clock = clock
        self.gate = gate
        self.error = error
        self.calls: list[Coordinate] = []
        self.dispatch_times: list[float] = []

    async def __call__(self, coordinate: Coordinate) -> RawPlacemark | None:
        self.calls.append(coordinate)
        if self.clock is not None:
            self.dispatch_times.append(self.clock())
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


def _build_resolver(lookup: FakeLookup, clock: FakeClock) -> GeocodingResolver:
    limiter = RateLimiter(min_interval_seconds=0.5, clock=clock, sleep=clock.sleep)
    return GeocodingResolver(lookup, cache=PlaceCache(), rate_limiter=limiter)


def test_cache_key_rounds_to_four_decimals() -> None:
    first = Coordinate(40.71281, -74.00601)
    second = Coordinate(40.71284, -74.00598)
    assert coordinate_cache_key(first) == "40.7128,-74.0060"
    assert coordinate_cache_key(first) == coordinate_cache_key(second)
    assert coordinate_cache_key(Coordinate(40.7130, -74.0060)) != coordinate_cache_key(first)


def test_coordinates_in_same_cell_share_one_lookup() -> None:
    clock = FakeClock()
    lookup = FakeLookup(clock=clock)
    resolver = _build_resolver(lookup, clock)

    async def scenario() -> tuple[Place, Place]:
        first = await resolver.resolve(Coordinate(40.71281, -74.00601))
        second = await resolver.resolve(Coordinate(40.71284, -74.00598))
        return first, second

    first, second = asyncio.run(scenario())

    assert len(lookup.calls) == 1
    assert first == second
    assert first.name == "示例咖啡馆"
    assert first.address == "12 Example Street, Springfield, IL, 62701"
    assert clock.sleeps == []


def test_concurrent_resolves_for_same_key_issue_single_lookup() -> None:
    clock = FakeClock()
    coordinate = Coordinate(40.7128, -74.0060)

    async def scenario() -> tuple[FakeLookup, list[Place], GeocodingResolver, bool]:
        gate = asyncio.Event()
        lookup = FakeLookup(clock=clock, gate=gate)
        resolver = _build_resolver(lookup, clock)
        tasks = [asyncio.create_task(resolver.resolve(coordinate)) for _ in range(5)]
        await asyncio.sleep(0)
        pending = resolver.is_pending(coordinate)
        gate.set()
        results = await asyncio.gather(*tasks)
        return lookup, results, resolver, pending

    lookup, results, resolver, pending = asyncio.run(scenario())

    assert pending is True
    assert len(lookup.calls) == 1
    assert all(result == results[0] for result in results)
    assert resolver.is_pending(coordinate) is False


def test_lookups_for_different_keys_are_spaced_by_interval() -> None:
    clock = FakeClock()
    lookup = FakeLookup(clock=clock)
    resolver = _build_resolver(lookup, clock)

    async def scenario() -> None:
        await resolver.resolve(Coordinate(40.7128, -74.0060))
        await resolver.resolve(Coordinate(40.7130, -74.0060))
        await resolver.resolve(Coordinate(40.7128, -74.0060))

    asyncio.run(scenario())

    assert len(lookup.calls) == 2
    assert lookup.dispatch_times[1] - lookup.dispatch_times[0] >= 0.5
    assert clock.sleeps == [0.5]


def test_concurrent_lookups_for_different_keys_are_serialized_by_limiter() -> None:
    clock = FakeClock()
    lookup = FakeLookup(clock=clock)
    resolver = _build_resolver(lookup, clock)
    coordinates = [Coordinate(40.7128 + index * 0.001, -74.0060) for index in range(3)]

    async def scenario() -> None:
        await asyncio.gather(*(resolver.resolve(coordinate) for coordinate in coordinates))

    asyncio.run(scenario())

    times = sorted(lookup.dispatch_times)
    assert len(times) == 3
    for previous, current in zip(times, times[1:]):
        assert current - previous >= 0.5 - 1e-9


def test_cached_key_is_served_while_other_key_is_in_flight() -> None:
    clock = FakeClock()
    cached_coordinate = Coordinate(40.7130, -74.0060)
    slow_coordinate = Coordinate(40.7128, -74.0060)

    async def scenario() -> tuple[Place, Place]:
        gate = asyncio.Event()
        lookup = FakeLookup(clock=clock, gate=gate)
        resolver = _build_resolver(lookup, clock)
        resolver.cache.set(coordinate_cache_key(cached_coordinate), Place(name="示例地点A"))

        slow = asyncio.create_task(resolver.resolve(slow_coordinate))
        await asyncio.sleep(0)
        cached = await asyncio.wait_for(resolver.resolve(cached_coordinate), timeout=1.0)
        gate.set()
        return cached, await slow

    cached, slow = asyncio.run(scenario())

    assert cached.name == "示例地点A"
    assert slow.name == "示例咖啡馆"


def test_empty_result_is_cached_and_not_retried() -> None:
    clock = FakeClock()
    lookup = FakeLookup(result=None, clock=clock)
    resolver = _build_resolver(lookup, clock)
    coordinate = Coordinate(40.7128, -74.0060)

    async def scenario() -> tuple[Place, Place]:
        return await resolver.resolve(coordinate), await resolver.resolve(coordinate)

    first, second = asyncio.run(scenario())

    assert first.is_empty
    assert second.is_empty
    assert len(lookup.calls) == 1
    assert coordinate_cache_key(coordinate) in resolver.cache


def test_lookup_failure_is_not_cached_and_allows_retry() -> None:
    clock = FakeClock()
    lookup = FakeLookup(clock=clock, error=ConnectionError("offline"))
    resolver = _build_resolver(lookup, clock)
    coordinate = Coordinate(40.7128, -74.0060)

    async def failing() -> None:
        await resolver.resolve(coordinate)

    with pytest.raises(GeocodingLookupError):
        asyncio.run(failing())

    assert len(resolver.cache) == 0
    assert resolver.is_pending(coordinate) is False

    lookup.error = None
    place = asyncio.run(resolver.resolve(coordinate))
    assert place.name == "示例咖啡馆"
    assert len(lookup.calls) == 2


def test_lookup_failure_propagates_to_all_waiters() -> None:
    clock = FakeClock()
    coordinate = Coordinate(40.7128, -74.0060)

    async def scenario() -> list[object]:
        gate = asyncio.Event()
        lookup = FakeLookup(clock=clock, gate=gate, error=TimeoutError("slow"))
        resolver = _build_resolver(lookup, clock)
        tasks = [asyncio.create_task(resolver.resolve(coordinate)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert len(lookup.calls) == 1
        return results

    results = asyncio.run(scenario())
    assert all(isinstance(result, GeocodingLookupError) for result in results)


def test_clear_cache_forces_new_lookup() -> None:
    clock = FakeClock()
    lookup = FakeLookup(clock=clock)
    resolver = _build_resolver(lookup, clock)
    coordinate = Coordinate(40.7128, -74.0060)

    async def scenario() -> None:
        await resolver.resolve(coordinate)
        resolver.clear_cache()
        await resolver.resolve(coordinate)

    asyncio.run(scenario())
    assert len(lookup.calls) == 2


def test_rate_limiter_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        RateLimiter(min_interval_seconds=0)


class FailOnceLookup(FakeLookup):
    """第一次查询失败，并在失败的同一步内安排一个后续回调。"""

    def __init__(self, clock: FakeClock, on_failure) -> None:
        super().__init__(clock=clock, error=ConnectionError("offline"))
        self.on_failure = on_failure

    async def __call__(self, coordinate: Coordinate) -> RawPlacemark | None:
        if self.error is not None:
            asyncio.get_running_loop().call_soon(self.on_failure)
        return await super().__call__(coordinate)


def test_caller_arriving_right_after_failure_starts_new_lookup() -> None:
    clock = FakeClock()
    coordinate = Coordinate(40.7128, -74.0060)

    async def scenario() -> tuple[FailOnceLookup, Place, bool]:
        followups: list[asyncio.Task[Place]] = []
        pending_seen: list[bool] = []

        def follow_up() -> None:
            pending_seen.append(resolver.is_pending(coordinate))
            lookup.error = None
            followups.append(asyncio.get_running_loop().create_task(resolver.resolve(coordinate)))

        lookup = FailOnceLookup(clock, follow_up)
        resolver = _build_resolver(lookup, clock)

        with pytest.raises(GeocodingLookupError):
            await resolver.resolve(coordinate)
        place = await followups[0]
        return lookup, place, pending_seen[0]

    lookup, place, pending_after_failure = asyncio.run(scenario())

    assert pending_after_failure is False
    assert place.name == "示例咖啡馆"
    assert len(lookup.calls) == 2
