"""到访状态机。"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

from location_tracker.domain.tracking_types import (
    HasCurrentVisit,
    LocationFix,
    LocationPoint,
    NoCurrentVisit,
    SensorVisit,
    Visit,
    VisitState,
)
from location_tracker.repositories.visit_repository import PersistenceError, VisitRepository
from location_tracker.services.geocoding_resolver import GeocodingLookupError, GeocodingResolver

logger = logging.getLogger(__name__)

MAX_ACCEPTED_ACCURACY_M = 100.0


class VisitTracker:
    """消费到访与定位事件，维护唯一的当前到访。

    状态只有 NoCurrentVisit 与 HasCurrentVisit 两种；到达/离开事件按坐标
    精确相等进行配对。新建到访后异步触发逆地理编码，解析失败或延迟都不会
    阻塞或回滚到访的创建。
    """

    def __init__(
        self,
        repository: VisitRepository,
        resolver: GeocodingResolver,
        report_error: Callable[[str], None] | None = None,
        max_accuracy_m: float = MAX_ACCEPTED_ACCURACY_M,
    ) -> None:
        self._repository = repository
        self._resolver = resolver
        self._report_error = report_error or _log_error
        self._max_accuracy_m = max_accuracy_m
        self._state: VisitState = NoCurrentVisit()
        self._tasks: set[asyncio.Task[None]] = set()
        self._geocoding: dict[str, Visit] = {}
        self._discarded_ids: set[str] = set()
        self.last_fix: LocationFix | None = None

    @property
    def state(self) -> VisitState:
        return self._state

    @property
    def current_visit(self) -> Visit | None:
        if isinstance(self._state, HasCurrentVisit):
            return self._state.visit
        return None

    def restore(self) -> Visit | None:
        """启动时从存储恢复当前到访。"""

        open_visits = self._repository.find_open_visits()
        if not open_visits:
            self._state = NoCurrentVisit()
            return None

        if len(open_visits) > 1:
            logger.warning(
                "Found %d open visits in storage, using the most recent one",
                len(open_visits),
            )
        self._state = HasCurrentVisit(open_visits[0])
        return open_visits[0]

    def handle_visit(self, event: SensorVisit) -> Visit | None:
        """处理到访通知，返回被创建或更新的到访。"""

        if event.is_departure:
            return self._handle_departure(event)
        return self._handle_arrival(event)

    def handle_fixes(
        self,
        fixes: Sequence[LocationFix],
        continuous_active: bool,
    ) -> LocationPoint | None:
        """处理一批定位，仅记录最新一条。"""

        if not fixes:
            return None

        latest = fixes[-1]
        self.last_fix = latest
        if not continuous_active:
            return None
        if not 0 <= latest.horizontal_accuracy <= self._max_accuracy_m:
            logger.debug("Discarding fix with accuracy %.1fm", latest.horizontal_accuracy)
            return None

        speed = latest.speed if latest.speed is not None and latest.speed >= 0 else None
        point = LocationPoint(
            coordinate=latest.coordinate,
            timestamp=latest.timestamp,
            horizontal_accuracy=latest.horizontal_accuracy,
            altitude=latest.altitude,
            speed=speed,
        )
        self._repository.create_location_point(point)
        self._save("Failed to save location point")
        return point

    async def geocode_visit(self, visit: Visit) -> None:
        """解析到访地点；失败时同样标记为已完成，避免自动重试。"""

        if visit.geocoding_completed:
            self._finish_geocoding(visit.visit_id)
            return

        self._geocoding[visit.visit_id] = visit
        try:
            place = await self._resolver.resolve(visit.coordinate)
        except GeocodingLookupError as exc:
            logger.warning("Geocoding failed for visit %s: %s", visit.visit_id, exc)
            visit.geocoding_completed = True
        else:
            visit.apply_place(place)
        finally:
            discarded = self._finish_geocoding(visit.visit_id)

        if discarded:
            logger.debug("Visit %s was removed while geocoding, skipping save", visit.visit_id)
            return
        self._repository.upsert_visit(visit)
        self._save("Failed to save visit")

    async def retry_geocoding(self, visit_id: str) -> Visit | None:
        """手动重试：清除完成标记后重新解析。"""

        visit = self._find_visit(visit_id)
        if visit is None:
            return None
        if visit_id in self._geocoding:
            # 已有解析在途，结果会写回同一个对象
            return visit
        visit.geocoding_completed = False
        await self.geocode_visit(visit)
        return visit

    def update_notes(self, visit_id: str, notes: str) -> Visit | None:
        visit = self._find_visit(visit_id)
        if visit is None:
            return None
        visit.notes = notes if notes else None
        self._repository.upsert_visit(visit)
        self._save("Failed to save visit")
        return visit

    def delete_visit(self, visit_id: str) -> bool:
        current = self.current_visit
        if current is not None and current.visit_id == visit_id:
            self._state = NoCurrentVisit()
        if visit_id in self._geocoding:
            self._discarded_ids.add(visit_id)
        return self._repository.delete_visit(visit_id)

    def clear_all(self) -> None:
        """清空全部到访、定位点与地点缓存。"""

        self._discarded_ids.update(self._geocoding)
        self._state = NoCurrentVisit()
        self._resolver.clear_cache()
        self._repository.clear_all()

    async def drain(self) -> None:
        """等待所有挂起的解析任务结束。"""

        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _handle_arrival(self, event: SensorVisit) -> Visit | None:
        if not event.has_known_arrival:
            logger.debug("Ignoring visit with unknown arrival time")
            return None

        current = self.current_visit
        if current is not None:
            if current.coordinate == event.coordinate:
                logger.debug("Visit %s already open at this coordinate", current.visit_id)
                return current
            # 单一当前到访：新到达隐式结束上一个
            current.departed_at = max(event.arrival_at, current.arrived_at)
            self._repository.upsert_visit(current)
            logger.info("Closed visit %s implicitly at %s", current.visit_id, current.departed_at)

        visit = Visit(coordinate=event.coordinate, arrived_at=event.arrival_at)
        self._state = HasCurrentVisit(visit)
        self._repository.upsert_visit(visit)
        self._save("Failed to save visit")
        logger.info("Visit %s started at %s", visit.visit_id, visit.arrived_at)

        self._schedule_geocoding(visit)
        return visit

    def _handle_departure(self, event: SensorVisit) -> Visit | None:
        current = self.current_visit
        if current is None or current.coordinate != event.coordinate:
            logger.debug("No open visit matches departure, ignoring")
            return None

        current.departed_at = event.departure_at
        self._state = NoCurrentVisit()
        self._repository.upsert_visit(current)
        self._save("Failed to save visit")
        logger.info("Visit %s ended at %s", current.visit_id, current.departed_at)
        return current

    def _schedule_geocoding(self, visit: Visit) -> None:
        # 任务开始前就登记，clear_all / delete_visit 才能看到它
        self._geocoding[visit.visit_id] = visit
        task = asyncio.get_running_loop().create_task(self.geocode_visit(visit))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _finish_geocoding(self, visit_id: str) -> bool:
        """注销在途解析，返回该到访是否已被删除。"""

        self._geocoding.pop(visit_id, None)
        if visit_id in self._discarded_ids:
            self._discarded_ids.discard(visit_id)
            return True
        return False

    def _find_visit(self, visit_id: str) -> Visit | None:
        current = self.current_visit
        if current is not None and current.visit_id == visit_id:
            return current
        in_flight = self._geocoding.get(visit_id)
        if in_flight is not None:
            return in_flight
        return self._repository.get_visit(visit_id)

    def _save(self, message: str) -> None:
        try:
            self._repository.save()
        except PersistenceError as exc:
            self._report_error(f"{message}: {exc}")


def _log_error(message: str) -> None:
    logger.error(message)
