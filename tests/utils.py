"""
Test utilities for SafeWatch testing.
"""
import asyncio

from safewatch.core.clock import ManualClock


async def drain(rounds: int = 100):
    """Let every ready task run until the loop goes quiet"""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def advance(clock: ManualClock, seconds: float, step: float = None):
    """
    Advance a ManualClock, letting woken tasks run after each step so
    chained sleeps observe intermediate times.
    """
    step = step or seconds
    remaining = seconds
    while remaining > 0:
        delta = min(step, remaining)
        clock.advance(delta)
        remaining -= delta
        await drain()
