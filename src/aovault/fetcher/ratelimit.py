"""源站请求限流器."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    保证任意两次放行之间至少间隔 min_interval 秒.

    所有传输策略共享同一个实例。检查与记录在同一把锁内完成，
    并发调用者会被逐个放行，而不是同时放行。
    clock / sleep 可注入，测试时用假时钟替换。
    """

    def __init__(
        self,
        min_interval: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_granted: float | None = None

    @property
    def last_granted(self) -> float | None:
        """最近一次放行时间."""
        return self._last_granted

    async def acquire(self) -> float:
        """等待直到可以发出下一次请求，返回放行时间."""
        async with self._lock:
            now = self._clock()
            if self._last_granted is not None:
                wait = self._last_granted + self.min_interval - now
                if wait > 0:
                    logger.debug(f"限流等待 {wait:.2f}s")
                    await self._sleep(wait)
                    now = max(self._clock(), self._last_granted + self.min_interval)
            self._last_granted = now
            return now
