"""
Emergency Safety Service

Main service that wires the safety engine together and exposes the
user-facing operations:
- Check-in scheduling, completion and cancellation
- Manual, voice and automatic SOS triggers
- Alert resolution, including bulk and stale-alert sweeps
- Threat monitoring per user
- Restore of pending check-ins and active alerts on start
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from safewatch.core.clock import Clock, SystemClock
from safewatch.core.state import SafetyStateStore
from safewatch.models.safety import (
    CheckIn, DispatchRecord, LocationData, ThreatDetection, ThreatType, TriggerSource
)
from safewatch.services.notifications import (
    EmailChannel, EmailChannelConfig, NotificationChannel, NotificationFanout,
    RetryPolicy, WhatsAppChannel, WhatsAppChannelConfig
)
from .checkin_scheduler import CheckInScheduler
from .context import ContextSnapshotter, DeviceContext, LocationProvider
from .coordinator import EmergencyEscalationCoordinator, EscalationSettings
from .persistence import PersistenceGateway
from .recorder import Recorder
from .threat_monitor import MotionSensor, MotionThreatDetector, ThreatDetector, ThreatMonitor


ErrorCallback = Callable[[str, Exception], Any]


def build_channels(notifications_config: Dict[str, Any]) -> List[NotificationChannel]:
    """Create the enabled notification channels from the notifications section"""
    channels: List[NotificationChannel] = []

    email_config = notifications_config.get('email', {})
    if email_config.get('enabled', True):
        channels.append(EmailChannel(EmailChannelConfig.from_dict(email_config)))

    whatsapp_config = notifications_config.get('whatsapp', {})
    if whatsapp_config.get('enabled', True):
        channels.append(WhatsAppChannel(WhatsAppChannelConfig.from_dict(whatsapp_config)))

    return channels


class EmergencySafetyService:
    """
    Safety check-in and emergency escalation service
    """

    def __init__(
        self,
        config: Dict[str, Any],
        gateway: PersistenceGateway,
        clock: Optional[Clock] = None,
        channels: Optional[List[NotificationChannel]] = None,
        recorder: Optional[Recorder] = None,
        location_provider: Optional[LocationProvider] = None,
        device_context: Optional[DeviceContext] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.config = config or {}
        self.gateway = gateway
        self.clock = clock or SystemClock()
        self.state = SafetyStateStore()

        checkin_config = self.config.get('checkin', {})
        escalation_config = self.config.get('escalation', {})
        notifications_config = self.config.get('notifications', {})
        self.threat_config = self.config.get('threat_monitor', {})

        if channels is None:
            channels = build_channels(notifications_config)

        self.fanout = NotificationFanout(
            channels,
            policy=RetryPolicy.from_config(notifications_config),
            stop_on_first_success=notifications_config.get('stop_on_first_success', False)
        )

        self.snapshotter = ContextSnapshotter(
            location_provider=location_provider,
            device_context=device_context,
            timeout=escalation_config.get('context_timeout_seconds', 10),
            clock=self.clock
        )

        self.coordinator = EmergencyEscalationCoordinator(
            clock=self.clock,
            state=self.state,
            gateway=self.gateway,
            fanout=self.fanout,
            snapshotter=self.snapshotter,
            recorder=recorder,
            settings=EscalationSettings.from_config(escalation_config),
            error_callback=self._handle_error
        )

        self.scheduler = CheckInScheduler(
            clock=self.clock,
            state=self.state,
            gateway=self.gateway,
            on_overdue=self._escalate,
            tick_interval=checkin_config.get('tick_interval_seconds', 30),
            error_callback=self._handle_error
        )
        self.restore_on_start = checkin_config.get('restore_on_start', True)

        self.monitor = ThreatMonitor(
            clock=self.clock,
            trigger=self._escalate,
            auto_sos=self.threat_config.get('auto_sos', False),
            confidence_threshold=self.threat_config.get('confidence_threshold', 0.7),
            trigger_types=[ThreatType(t) for t in self.threat_config.get('trigger_types', ['fall', 'impact', 'distress_audio'])],
            sample_interval=self.threat_config.get('sample_interval_seconds', 0.5),
            on_threat=self._handle_threat,
            error_callback=self._handle_error
        )

        self.user_names: Dict[str, str] = {}
        self.error_callbacks: List[ErrorCallback] = []
        self.threat_callbacks: List[Callable[[str, ThreatDetection], Any]] = []

        self._running = False

    async def start(self):
        """Start the service and restore persisted work"""
        if self._running:
            return

        self._running = True
        await self.fanout.start()

        if self.restore_on_start:
            for alert in self.gateway.list_active_alerts():
                await self.coordinator.adopt(alert)
            await self.scheduler.restore()

        self.logger.info("Emergency Safety Service started")

    async def stop(self):
        """Stop background work; pending check-ins and active alerts stay persisted"""
        if not self._running:
            return

        self._running = False
        await self.monitor.stop_all()
        await self.scheduler.stop()
        await self.coordinator.shutdown()
        await self.fanout.stop()

        self.logger.info("Emergency Safety Service stopped")

    def add_error_callback(self, callback: ErrorCallback):
        """Register a callback for errors the user must see (critical failures, denied permissions)"""
        self.error_callbacks.append(callback)

    def add_threat_callback(self, callback: Callable[[str, ThreatDetection], Any]):
        self.threat_callbacks.append(callback)

    def set_user_name(self, user_id: str, name: str):
        self.user_names[user_id] = name

    # Check-ins

    async def schedule_check_in(
        self,
        user_id: str,
        scheduled_time: Optional[datetime] = None,
        minutes: Optional[float] = None,
        location: Optional[LocationData] = None
    ) -> CheckIn:
        """Schedule a check-in at an absolute time or `minutes` from now"""
        if scheduled_time is None:
            if minutes is None:
                raise ValueError("Either scheduled_time or minutes is required")
            scheduled_time = self.clock.now() + timedelta(minutes=minutes)
        return await self.scheduler.schedule(user_id, scheduled_time, location)

    async def complete_check_in(self, user_id: str) -> bool:
        return await self.scheduler.complete(user_id)

    async def cancel_check_in(self, user_id: str) -> bool:
        return await self.scheduler.cancel(user_id)

    # Alerts

    async def trigger_sos(self, user_id: str, source: TriggerSource = TriggerSource.MANUAL) -> str:
        return await self._escalate(source, user_id)

    async def resolve_alert(self, alert_id: str) -> bool:
        return await self.coordinator.resolve(alert_id)

    async def resolve_all_alerts(self, user_id: str) -> int:
        return await self.coordinator.resolve_all(user_id)

    async def resolve_stale_alerts(self, user_id: Optional[str] = None, hours: Optional[float] = None) -> int:
        return await self.coordinator.resolve_stale(user_id, hours)

    def get_dispatch_history(self, alert_id: str) -> List[DispatchRecord]:
        return self.gateway.list_dispatches(alert_id)

    # Threat monitoring

    async def start_threat_monitoring(
        self,
        user_id: str,
        detector: Optional[ThreatDetector] = None,
        sensor: Optional[MotionSensor] = None
    ):
        """
        Start threat monitoring for a user

        Args:
            user_id: User to monitor
            detector: Detector to sample, or
            sensor: Motion sensor wrapped in a MotionThreatDetector built from config
        """
        if not self.threat_config.get('enabled', True):
            self.logger.info("Threat monitoring is disabled in configuration")
            return

        if detector is None:
            if sensor is None:
                raise ValueError("A detector or a motion sensor is required")
            detector = MotionThreatDetector(
                sensor,
                sensitivity=self.threat_config.get('sensitivity', 'medium'),
                fall_detection=self.threat_config.get('fall_detection', True),
                impact_detection=self.threat_config.get('impact_detection', True),
                suspicious_activity_detection=self.threat_config.get('suspicious_activity_detection', True)
            )

        await self.monitor.start(user_id, detector)

    async def stop_threat_monitoring(self, user_id: str):
        await self.monitor.stop(user_id)

    async def report_detection(self, user_id: str, detection: ThreatDetection) -> Optional[str]:
        """Feed a detection produced outside the sampling loop (e.g. distress audio)"""
        return await self.monitor.handle_detection(user_id, detection)

    # Status

    def get_status(self, user_id: str) -> Dict[str, Any]:
        """Current check-in and alert state for a user"""
        check_in = self.scheduler.get_active(user_id)
        alert = self.coordinator.get_active_alert(user_id)
        session = self.coordinator.sessions.get(alert.id) if alert else None

        return {
            'user_id': user_id,
            'check_in': {
                'id': check_in.id,
                'scheduled_time': check_in.scheduled_time.isoformat(),
                'remaining_seconds': self.scheduler.remaining(user_id)
            } if check_in else None,
            'alert': {
                'id': alert.id,
                'type': alert.alert_type.value,
                'triggered_at': alert.triggered_at.isoformat(),
                'cycles': session.cycles if session else 0,
                'recording': bool(session and not session.capture_stopped)
            } if alert else None,
            'threat_monitoring': self.monitor.is_monitoring(user_id)
        }

    async def _escalate(self, source: TriggerSource, user_id: str) -> str:
        return await self.coordinator.trigger(source, user_id, self.user_names.get(user_id))

    async def _handle_threat(self, user_id: str, detection: ThreatDetection):
        for callback in self.threat_callbacks:
            try:
                result = callback(user_id, detection)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error(f"Error in threat callback: {e}")

    async def _handle_error(self, user_id: str, error: Exception):
        self.logger.error(f"Safety error for user {user_id}: {error}")
        for callback in self.error_callbacks:
            try:
                result = callback(user_id, error)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error(f"Error in error callback: {e}")
