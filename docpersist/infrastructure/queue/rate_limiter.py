import asyncio
import time
from typing import Awaitable, Callable, Optional


class TokenBucket:
    """Ограничение пропускной способности: capacity заданий за period секунд.

    Все обработчики делят корзину в одном цикле событий, поэтому проверка
    и списание токена в acquire() не перемежаются.
    """

    def __init__(
        self,
        capacity: int,
        period: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if capacity <= 0 or period <= 0:
            raise ValueError("capacity and period must be positive")
        self.capacity = capacity
        self.period = period
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._tokens = float(capacity)
        self._updated = clock()

    @property
    def rate(self) -> float:
        return self.capacity / self.period

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._updated, 0.0)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def release(self) -> None:
        """Возврат неиспользованного токена"""
        self._tokens = min(self.capacity, self._tokens + 1)

    async def acquire(self) -> None:
        """Ожидание свободного токена"""
        while not self.try_acquire():
            await self._sleep((1 - self._tokens) / self.rate)
