"""
Audio evidence recorders

A Recorder produces AudioSegments for an active alert at a fixed cadence and
hands each one to a callback. Codec and capture details belong to the
concrete recorder.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from safewatch.core.clock import Clock
from safewatch.models.safety import AudioSegment


SegmentCallback = Callable[[AudioSegment], Awaitable[None]]


@dataclass
class RecordingHandle:
    """Returned by start_segment_loop and passed back to stop"""
    alert_id: str
    task: Optional[asyncio.Task] = None
    start_sequence: int = 1


class Recorder(ABC):
    """Captures rolling evidence segments for an alert"""

    @abstractmethod
    async def start_segment_loop(
        self,
        alert_id: str,
        on_segment_ready: SegmentCallback,
        start_sequence: int = 1
    ) -> RecordingHandle:
        """
        Begin capturing.

        Raises:
            PermissionDeniedError: the microphone permission was refused
        """
        pass

    @abstractmethod
    async def stop(self, handle: RecordingHandle) -> None:
        pass


class IntervalRecorder(Recorder):
    """
    Emits a segment without audio every interval.

    Used where no audio capture is available, so the alert keeps sending
    location updates on the same cadence as recordings would.
    """

    def __init__(self, clock: Clock, interval_seconds: float = 60.0):
        self.logger = logging.getLogger(__name__)
        self.clock = clock
        self.interval_seconds = interval_seconds

    async def start_segment_loop(
        self,
        alert_id: str,
        on_segment_ready: SegmentCallback,
        start_sequence: int = 1
    ) -> RecordingHandle:
        handle = RecordingHandle(alert_id=alert_id, start_sequence=start_sequence)
        handle.task = asyncio.create_task(self._run(handle, on_segment_ready))
        self.logger.debug(f"Started interval segments for alert {alert_id} every {self.interval_seconds}s")
        return handle

    async def stop(self, handle: RecordingHandle) -> None:
        if handle.task and not handle.task.done():
            handle.task.cancel()
            try:
                await handle.task
            except asyncio.CancelledError:
                pass

    async def _run(self, handle: RecordingHandle, on_segment_ready: SegmentCallback):
        sequence = handle.start_sequence
        while True:
            await self.clock.sleep(self.interval_seconds)
            segment = AudioSegment(
                alert_id=handle.alert_id,
                sequence=sequence,
                duration_seconds=self.interval_seconds,
                captured_at=self.clock.now()
            )
            await on_segment_ready(segment)
            sequence += 1
