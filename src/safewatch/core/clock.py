"""
Clock abstraction for SafeWatch

All scheduling math is done against a Clock. Deadlines are absolute wall
times and are re-derived on every wake-up, so a countdown stays correct when
the process is suspended and resumed. Durations (capture loop caps) use the
monotonic reading.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple


def utc_now() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class Clock(ABC):
    """Time source used by the scheduler, monitor and coordinator"""

    @abstractmethod
    def now(self) -> datetime:
        """Current wall time (timezone-aware UTC)"""
        pass

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic seconds, only meaningful as a difference"""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Cooperatively wait for the given number of seconds"""
        pass

    def seconds_until(self, deadline: datetime) -> float:
        """Seconds from now until an absolute deadline (negative if passed)"""
        return (deadline - self.now()).total_seconds()


class SystemClock(Clock):
    """Production clock backed by the OS"""

    def now(self) -> datetime:
        return utc_now()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """
    Deterministic clock for tests and simulations.

    Time only moves when advance() or suspend() is called. Sleepers are woken
    by advance() once the monotonic reading reaches their wake time.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._monotonic = 0.0
        self._sleepers: List[Tuple[float, asyncio.Future]] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return

        future = asyncio.get_running_loop().create_future()
        entry = (self._monotonic + seconds, future)
        self._sleepers.append(entry)
        try:
            await future
        finally:
            if entry in self._sleepers:
                self._sleepers.remove(entry)

    def advance(self, seconds: float) -> None:
        """Move wall and monotonic time forward and wake due sleepers"""
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds
        self._wake_due()

    def suspend(self, seconds: float) -> None:
        """
        Simulate the process being suspended: wall time moves, the monotonic
        reading does not, and no sleeper is woken.
        """
        self._now += timedelta(seconds=seconds)

    @property
    def pending_sleepers(self) -> int:
        return len(self._sleepers)

    def _wake_due(self) -> None:
        for wake_at, future in list(self._sleepers):
            if wake_at <= self._monotonic and not future.done():
                future.set_result(None)
