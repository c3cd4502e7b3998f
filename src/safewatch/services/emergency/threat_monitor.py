"""
Threat Monitoring

Samples threat detectors for monitored users and originates an automatic
SOS trigger when a detection passes the configured policy. The monitor holds
no alert state; repeated detections during an active alert collapse into the
same alert through the coordinator's dedup.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from safewatch.core.clock import Clock
from safewatch.core.errors import PermissionDeniedError
from safewatch.models.safety import MotionSample, ThreatDetection, ThreatType, TriggerSource


class ThreatDetector(ABC):
    """Produces at most one detection per sample"""

    @abstractmethod
    async def sample(self) -> Optional[ThreatDetection]:
        pass

    async def start(self):
        """Acquire sensors; may raise PermissionDeniedError"""
        pass

    async def stop(self):
        pass


class MotionSensor(ABC):
    """Accelerometer/gyroscope source"""

    @abstractmethod
    async def read(self) -> Optional[MotionSample]:
        pass

    async def start(self):
        pass

    async def stop(self):
        pass


# Score thresholds per sensitivity: fall / impact / suspicious movement
SENSITIVITY_PROFILES = {
    'low': {'fall': 15, 'impact': 20, 'movement': 8},
    'medium': {'fall': 12, 'impact': 15, 'movement': 6},
    'high': {'fall': 8, 'impact': 10, 'movement': 4},
}


class MotionThreatDetector(ThreatDetector):
    """Scores motion samples for falls, impacts and erratic movement"""

    def __init__(
        self,
        sensor: MotionSensor,
        sensitivity: str = 'medium',
        fall_detection: bool = True,
        impact_detection: bool = True,
        suspicious_activity_detection: bool = True
    ):
        if sensitivity not in SENSITIVITY_PROFILES:
            raise ValueError(f"Unknown sensitivity: {sensitivity}")

        self.sensor = sensor
        self.sensitivity = sensitivity
        self.fall_detection = fall_detection
        self.impact_detection = impact_detection
        self.suspicious_activity_detection = suspicious_activity_detection

    @property
    def thresholds(self) -> Dict[str, int]:
        return SENSITIVITY_PROFILES[self.sensitivity]

    async def start(self):
        await self.sensor.start()

    async def stop(self):
        await self.sensor.stop()

    async def sample(self) -> Optional[ThreatDetection]:
        reading = await self.sensor.read()
        if reading is None:
            return None

        detections = self.analyze(reading)
        if not detections:
            return None
        return max(detections, key=lambda d: d.confidence)

    def analyze(self, sample: MotionSample) -> List[ThreatDetection]:
        """Every detection the sample produces under the current profile"""
        detections = []
        accel = sample.acceleration.magnitude
        rotation = sample.rotation_rate.magnitude

        if self.fall_detection:
            score = self.fall_score(sample)
            if score > self.thresholds['fall']:
                detections.append(self._detection(ThreatType.FALL, score / 20, score, sample, accel, rotation))

        if self.impact_detection:
            score = self.impact_score(sample)
            if score > self.thresholds['impact']:
                detections.append(self._detection(ThreatType.IMPACT, score / 25, score, sample, accel, rotation))

        if self.suspicious_activity_detection:
            score = self.suspicious_score(sample)
            if score > self.thresholds['movement']:
                detections.append(
                    self._detection(ThreatType.SUSPICIOUS_ACTIVITY, score / 15, score, sample, accel, rotation)
                )

        return detections

    @staticmethod
    def fall_score(sample: MotionSample) -> float:
        score = 0
        # Free fall
        if sample.acceleration.magnitude < 5:
            score += 10
        if sample.rotation_rate.magnitude > 3:
            score += 5
        # Orientation flip
        if abs(sample.acceleration.z) > 15:
            score += 8
        return score

    @staticmethod
    def impact_score(sample: MotionSample) -> float:
        magnitude = sample.acceleration.magnitude
        return magnitude if magnitude > 20 else 0

    @staticmethod
    def suspicious_score(sample: MotionSample) -> float:
        accel = sample.acceleration.magnitude
        rotation = sample.rotation_rate.magnitude
        score = 0
        if accel > 12 and rotation > 2:
            score += 6
        if accel > 15:
            score += 4
        if rotation > 4:
            score += 3
        return score

    def _detection(self, threat_type, confidence, score, sample, accel, rotation) -> ThreatDetection:
        return ThreatDetection(
            type=threat_type,
            confidence=min(confidence, 1.0),
            timestamp=sample.timestamp,
            data={
                'score': score,
                'acceleration_magnitude': accel,
                'rotation_magnitude': rotation,
                'sensitivity': self.sensitivity
            }
        )


class ThreatMonitor:
    """Runs detectors per user and applies the auto-SOS policy"""

    def __init__(
        self,
        clock: Clock,
        trigger: Callable[[TriggerSource, str], Awaitable[str]],
        auto_sos: bool = False,
        confidence_threshold: float = 0.7,
        trigger_types: Iterable[ThreatType] = (ThreatType.FALL, ThreatType.IMPACT, ThreatType.DISTRESS_AUDIO),
        sample_interval: float = 0.5,
        on_threat: Optional[Callable[[str, ThreatDetection], Any]] = None,
        error_callback: Optional[Callable[[str, Exception], Any]] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.clock = clock
        self.trigger = trigger
        self.auto_sos = auto_sos
        self.confidence_threshold = confidence_threshold
        self.trigger_types = set(trigger_types)
        self.sample_interval = sample_interval
        self.on_threat = on_threat
        self.error_callback = error_callback

        self._detectors: Dict[str, ThreatDetector] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def is_monitoring(self, user_id: str) -> bool:
        task = self._tasks.get(user_id)
        return task is not None and not task.done()

    async def start(self, user_id: str, detector: ThreatDetector):
        """
        Start sampling a detector for a user

        Raises:
            PermissionDeniedError: the detector could not acquire its sensors
        """
        if self.is_monitoring(user_id):
            self.logger.info(f"Threat monitoring already running for user {user_id}")
            return

        await detector.start()
        self._detectors[user_id] = detector
        self._tasks[user_id] = asyncio.create_task(self._sample_loop(user_id, detector))
        self.logger.info(f"Threat monitoring started for user {user_id}")

    async def stop(self, user_id: str):
        task = self._tasks.pop(user_id, None)
        detector = self._detectors.pop(user_id, None)

        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if detector:
            try:
                await detector.stop()
            except Exception as e:
                self.logger.warning(f"Error stopping detector for user {user_id}: {e}")

        self.logger.info(f"Threat monitoring stopped for user {user_id}")

    async def stop_all(self):
        for user_id in list(self._tasks):
            await self.stop(user_id)

    def should_trigger(self, detection: ThreatDetection) -> bool:
        return (
            self.auto_sos
            and detection.type in self.trigger_types
            and detection.confidence >= self.confidence_threshold
        )

    async def handle_detection(self, user_id: str, detection: ThreatDetection) -> Optional[str]:
        """
        Apply the trigger policy to one detection

        Returns:
            The alert id if an SOS was triggered, otherwise None
        """
        self.logger.info(
            f"Threat detected for user {user_id}: {detection.type.value} "
            f"(confidence {detection.confidence:.2f})"
        )

        if self.on_threat:
            try:
                result = self.on_threat(user_id, detection)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error(f"Error in threat callback: {e}")

        if not self.should_trigger(detection):
            return None

        self.logger.warning(f"Auto SOS for user {user_id} on {detection.type.value} detection")
        try:
            return await self.trigger(TriggerSource.AI, user_id)
        except Exception as e:
            self.logger.critical(f"Auto SOS for user {user_id} failed: {e}")
            await self._report(user_id, e)
            return None

    async def _sample_loop(self, user_id: str, detector: ThreatDetector):
        while True:
            try:
                detection = await detector.sample()
            except PermissionDeniedError as e:
                self.logger.error(f"Threat monitoring for user {user_id} lost sensor access: {e}")
                await self._report(user_id, e)
                return
            except Exception as e:
                self.logger.error(f"Error sampling detector for user {user_id}: {e}")
            else:
                if detection is not None:
                    await self.handle_detection(user_id, detection)

            await self.clock.sleep(self.sample_interval)

    async def _report(self, user_id: str, error: Exception):
        if not self.error_callback:
            return
        try:
            result = self.error_callback(user_id, error)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.logger.error(f"Error in error callback: {e}")
