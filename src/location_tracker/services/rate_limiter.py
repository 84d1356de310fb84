"""全局查询限速。"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """保证任意两次外部查询的发起时间间隔不小于 min_interval_seconds。

    检查与更新在同一把锁内完成，每个调用者预留自己的发起时刻，
    然后在锁外协作式等待，因此等待不会阻塞事件循环上的其他工作。
    """

    def __init__(
        self,
        min_interval_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if min_interval_seconds <= 0:
            raise ValueError("min_interval_seconds must be positive.")
        self._interval = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._next_slot: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval_seconds(self) -> float:
        return self._interval

    async def acquire(self) -> float:
        """等待下一个可用发起时刻，返回等待秒数。"""

        async with self._lock:
            now = self._clock()
            slot = now if self._next_slot is None else max(now, self._next_slot)
            self._next_slot = slot + self._interval
            wait = slot - now

        if wait > 0:
            logger.debug("Rate limiter delaying lookup by %.3fs", wait)
            await self._sleep(wait)
        return wait
