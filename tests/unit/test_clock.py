"""
Unit tests for the clock abstraction
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone

from safewatch.core.clock import ManualClock, SystemClock, utc_now
from tests.utils import drain


class TestSystemClock:
    """Test the production clock"""

    def test_now_is_timezone_aware(self):
        assert SystemClock().now().tzinfo is not None
        assert utc_now().tzinfo == timezone.utc

    def test_monotonic_never_decreases(self):
        clock = SystemClock()
        first = clock.monotonic()
        assert clock.monotonic() >= first

    async def test_sleep_negative_returns_immediately(self):
        await asyncio.wait_for(SystemClock().sleep(-5), timeout=1)

    def test_seconds_until(self):
        clock = SystemClock()
        assert clock.seconds_until(clock.now() + timedelta(hours=1)) > 3590
        assert clock.seconds_until(clock.now() - timedelta(seconds=10)) < 0


class TestManualClock:
    """Test the deterministic clock"""

    def test_default_start(self):
        clock = ManualClock()
        assert clock.now() == datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert clock.monotonic() == 0.0

    def test_advance_moves_both_readings(self):
        clock = ManualClock()
        start = clock.now()
        clock.advance(90)
        assert clock.now() - start == timedelta(seconds=90)
        assert clock.monotonic() == 90

    def test_suspend_moves_wall_time_only(self):
        clock = ManualClock()
        start = clock.now()
        clock.suspend(300)
        assert clock.now() - start == timedelta(seconds=300)
        assert clock.monotonic() == 0

    async def test_sleep_wakes_on_advance(self):
        clock = ManualClock()
        woke = []

        async def sleeper():
            await clock.sleep(30)
            woke.append(clock.monotonic())

        task = asyncio.create_task(sleeper())
        await drain()
        assert clock.pending_sleepers == 1

        clock.advance(29)
        await drain()
        assert woke == []

        clock.advance(1)
        await drain()
        assert woke == [30]
        assert clock.pending_sleepers == 0
        await task

    async def test_suspend_does_not_wake_sleepers(self):
        clock = ManualClock()
        task = asyncio.create_task(clock.sleep(10))
        await drain()

        clock.suspend(3600)
        await drain()
        assert not task.done()

        clock.advance(10)
        await drain()
        assert task.done()

    async def test_cancelled_sleeper_is_removed(self):
        clock = ManualClock()
        task = asyncio.create_task(clock.sleep(10))
        await drain()
        assert clock.pending_sleepers == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert clock.pending_sleepers == 0

    async def test_zero_sleep_yields(self):
        clock = ManualClock()
        await asyncio.wait_for(clock.sleep(0), timeout=1)
        assert clock.pending_sleepers == 0
