"""
Emergency Escalation Coordination

Turns triggers from the SOS button, voice commands, threat detection and
overdue check-ins into exactly one active alert per user, and drives that
alert's capture and notification cycles until it is explicitly resolved.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from safewatch.core.clock import Clock
from safewatch.core.errors import (
    PermissionDeniedError, PersistenceFailureError, TotalNotificationFailureError
)
from safewatch.core.state import SafetyStateStore
from safewatch.models.safety import (
    AlertStatus, AudioSegment, DispatchRecord, FanoutReport, SOSAlert, TriggerSource
)
from safewatch.services.notifications.fanout import NotificationFanout
from .context import ContextSnapshotter
from .persistence import PersistenceGateway
from .recorder import IntervalRecorder, Recorder, RecordingHandle


@dataclass
class EscalationSettings:
    """Capture loop limits"""
    capture_interval_seconds: float = 60.0
    max_capture_minutes: float = 120.0
    max_capture_cycles: int = 120
    notify_on_trigger: bool = True
    stale_alert_hours: float = 24.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'EscalationSettings':
        return cls(
            capture_interval_seconds=config.get('capture_interval_seconds', 60.0),
            max_capture_minutes=config.get('max_capture_minutes', 120.0),
            max_capture_cycles=config.get('max_capture_cycles', 120),
            notify_on_trigger=config.get('notify_on_trigger', True),
            stale_alert_hours=config.get('stale_alert_hours', 24.0)
        )


@dataclass
class AlertSession:
    """Runtime state of one active alert"""
    alert: SOSAlert
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    task: Optional[asyncio.Task] = None
    cap_task: Optional[asyncio.Task] = None
    recorder: Optional[Recorder] = None
    handle: Optional[RecordingHandle] = None
    cycles: int = 0
    next_sequence: int = 1
    resolved: bool = False
    capture_stopped: bool = False
    last_report: Optional[FanoutReport] = None


class EmergencyEscalationCoordinator:
    """Owns the lifecycle of SOS alerts"""

    def __init__(
        self,
        clock: Clock,
        state: SafetyStateStore,
        gateway: PersistenceGateway,
        fanout: NotificationFanout,
        snapshotter: Optional[ContextSnapshotter] = None,
        recorder: Optional[Recorder] = None,
        settings: Optional[EscalationSettings] = None,
        error_callback: Optional[Callable[[str, Exception], Any]] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.clock = clock
        self.state = state
        self.gateway = gateway
        self.fanout = fanout
        self.snapshotter = snapshotter or ContextSnapshotter(clock=clock)
        self.settings = settings or EscalationSettings()
        self.recorder = recorder
        self.fallback_recorder = IntervalRecorder(clock, self.settings.capture_interval_seconds)
        self.error_callback = error_callback

        self.sessions: Dict[str, AlertSession] = {}
        self._opening: Dict[str, asyncio.Future] = {}

    async def trigger(self, source: TriggerSource, user_id: str, user_name: Optional[str] = None) -> str:
        """
        Open an alert for the user, or join the one already active

        Args:
            source: What raised the emergency
            user_id: User in danger
            user_name: Display name used in notifications

        Returns:
            Id of the user's active alert

        Raises:
            PersistenceFailureError: the alert could not be durably recorded
        """
        alert_id = str(uuid.uuid4())
        won, existing_id = self.state.claim_alert(user_id, alert_id)
        if not won:
            opening = self._opening.get(user_id)
            if opening is not None:
                # Share the outcome of the trigger that is still opening the alert
                return await asyncio.shield(opening)
            self.logger.info(f"{source.value} trigger for user {user_id} joined active alert {existing_id}")
            return existing_id

        opening = asyncio.get_running_loop().create_future()
        self._opening[user_id] = opening
        try:
            alert = await self._open_alert(alert_id, source, user_id, user_name)
        except BaseException as e:
            self.state.release_alert(user_id, alert_id)
            if isinstance(e, Exception):
                opening.set_exception(e)
                # Mark retrieved; there may be no waiters
                opening.exception()
            else:
                opening.cancel()
            raise
        finally:
            self._opening.pop(user_id, None)

        opening.set_result(alert.id)
        self._start_session(alert, notify_first=self.settings.notify_on_trigger)
        self.logger.warning(f"SOS alert {alert.id} opened for user {user_id} by {source.value} trigger")
        return alert.id

    async def resolve(self, alert_id: str) -> bool:
        """
        Stop an active alert. Unknown or already resolved ids return False.
        """
        session = self.sessions.pop(alert_id, None)
        if session is not None:
            alert = session.alert
            session.resolved = True
        else:
            alert = self.gateway.get_alert(alert_id)
            if alert is None or not alert.is_active():
                return False

        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = self.clock.now()
        # Triggers arriving while the recorder stops open a new alert
        self.state.release_alert(alert.user_id, alert.id)

        if session is not None:
            await self._stop_capture(session)

        try:
            await self.gateway.update_alert_status(alert.id, AlertStatus.RESOLVED, alert.resolved_at)
        except PersistenceFailureError as e:
            self.logger.error(f"Alert {alert.id} stopped but resolution was not recorded: {e}")
            await self._report(alert.user_id, e)

        self.logger.info(f"SOS alert {alert.id} for user {alert.user_id} resolved")
        return True

    async def resolve_all(self, user_id: str) -> int:
        """Resolve the user's active alert and any stray active rows"""
        resolved = 0
        seen = set()
        active_id = self.state.active_alert(user_id)
        if active_id:
            seen.add(active_id)
            if await self.resolve(active_id):
                resolved += 1

        for alert in self.gateway.list_active_alerts(user_id):
            if alert.id not in seen and await self.resolve(alert.id):
                resolved += 1

        if resolved:
            self.logger.info(f"Resolved {resolved} active alert(s) for user {user_id}")
        return resolved

    async def resolve_stale(self, user_id: Optional[str] = None, hours: Optional[float] = None) -> int:
        """Resolve active alerts triggered more than `hours` ago"""
        hours = self.settings.stale_alert_hours if hours is None else hours
        cutoff = self.clock.now() - timedelta(hours=hours)

        resolved = 0
        for alert in self.gateway.list_active_alerts(user_id):
            if alert.triggered_at < cutoff and await self.resolve(alert.id):
                resolved += 1

        if resolved:
            self.logger.info(f"Resolved {resolved} stale alert(s) older than {hours}h")
        return resolved

    async def adopt(self, alert: SOSAlert) -> bool:
        """
        Resume capture for an alert found active in storage after a restart.

        Returns:
            False if the user already has a different active alert
        """
        won, existing_id = self.state.claim_alert(alert.user_id, alert.id)
        if not won and existing_id != alert.id:
            self.logger.warning(
                f"Not resuming alert {alert.id}: user {alert.user_id} already has {existing_id}"
            )
            return False
        if alert.id in self.sessions:
            return True

        session = self._start_session(alert, notify_first=False)
        session.next_sequence = len(self.gateway.list_dispatches(alert.id)) + 1
        self.logger.info(f"Resumed SOS alert {alert.id} for user {alert.user_id}")
        return True

    def get_active_alert(self, user_id: str) -> Optional[SOSAlert]:
        alert_id = self.state.active_alert(user_id)
        if alert_id is None:
            return None
        session = self.sessions.get(alert_id)
        return session.alert if session else self.gateway.get_alert(alert_id)

    async def shutdown(self):
        """Stop every capture loop without resolving the alerts"""
        for session in list(self.sessions.values()):
            await self._stop_capture(session)
            if session.task and not session.task.done():
                session.task.cancel()
                try:
                    await session.task
                except asyncio.CancelledError:
                    pass
        self.sessions.clear()

    async def _open_alert(
        self,
        alert_id: str,
        source: TriggerSource,
        user_id: str,
        user_name: Optional[str]
    ) -> SOSAlert:
        context = await self.snapshotter.snapshot()
        alert = SOSAlert(
            id=alert_id,
            user_id=user_id,
            alert_type=source,
            triggered_at=self.clock.now(),
            user_name=user_name or "User"
        )
        alert.apply_context(context)

        try:
            return await self.gateway.create_alert(alert)
        except PersistenceFailureError as e:
            self.logger.critical(f"SOS alert for user {user_id} could not be recorded: {e}")
            raise

    def _start_session(self, alert: SOSAlert, notify_first: bool) -> AlertSession:
        session = AlertSession(alert=alert)
        self.sessions[alert.id] = session
        session.task = asyncio.create_task(self._run_session(session, notify_first))
        return session

    async def _run_session(self, session: AlertSession, notify_first: bool):
        alert = session.alert
        try:
            if notify_first:
                await self._dispatch(session, None)

            if session.resolved:
                return

            await self._start_capture(session)

            while True:
                segment = await session.queue.get()
                if segment is None or session.resolved:
                    break

                await self._dispatch(session, segment)
                session.cycles += 1

                if session.cycles >= self.settings.max_capture_cycles and not session.resolved:
                    self.logger.warning(
                        f"Alert {alert.id} reached {session.cycles} capture cycles; "
                        f"recording stopped, alert remains active"
                    )
                    await self._stop_capture(session)
                    break

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Capture loop for alert {alert.id} failed: {e}")
            await self._report(alert.user_id, e)

    async def _start_capture(self, session: AlertSession):
        alert_id = session.alert.id

        async def on_segment_ready(segment: AudioSegment):
            if not session.capture_stopped:
                session.queue.put_nowait(segment)

        recorder = self.recorder or self.fallback_recorder
        try:
            session.handle = await recorder.start_segment_loop(alert_id, on_segment_ready, session.next_sequence)
        except PermissionDeniedError as e:
            self.logger.error(f"Recording unavailable for alert {alert_id}, sending location updates only: {e}")
            await self._report(session.alert.user_id, e)
            recorder = self.fallback_recorder
            session.handle = await recorder.start_segment_loop(alert_id, on_segment_ready, session.next_sequence)
        session.recorder = recorder

        if session.capture_stopped:
            await recorder.stop(session.handle)
            return

        session.cap_task = asyncio.create_task(self._capture_time_limit(session))

    async def _capture_time_limit(self, session: AlertSession):
        await self.clock.sleep(self.settings.max_capture_minutes * 60)
        if not session.resolved:
            self.logger.warning(
                f"Alert {session.alert.id} reached the {self.settings.max_capture_minutes} minute "
                f"capture limit; recording stopped, alert remains active"
            )
        await self._stop_capture(session)

    async def _stop_capture(self, session: AlertSession):
        if session.capture_stopped:
            return
        session.capture_stopped = True

        if session.cap_task and session.cap_task is not asyncio.current_task():
            session.cap_task.cancel()

        if session.recorder and session.handle:
            try:
                await session.recorder.stop(session.handle)
            except Exception as e:
                self.logger.warning(f"Error stopping recorder for alert {session.alert.id}: {e}")

        session.queue.put_nowait(None)

    async def _dispatch(self, session: AlertSession, segment: Optional[AudioSegment]):
        alert = session.alert
        if segment is not None:
            await self._refresh_context(alert)
        contacts = self.gateway.get_emergency_contacts(alert.user_id)

        try:
            report = await self.fanout.send(alert, contacts, segment)
        except TotalNotificationFailureError as e:
            self.logger.critical(f"No emergency contact reached for alert {alert.id}: {e.reason}")
            await self._report(alert.user_id, e)
            report = e.report

        if session.resolved:
            self.logger.debug(f"Discarding cycle result for resolved alert {alert.id}")
            return

        session.last_report = report
        record = DispatchRecord(
            alert_id=alert.id,
            user_id=alert.user_id,
            sequence=segment.sequence if segment else 0,
            audio_uri=segment.uri if segment else None,
            location=alert.location,
            battery_level=alert.battery_level,
            network_type=alert.network_type,
            contacts_notified=len(report.succeeded_contacts),
            contacts_failed=len(report.failed_contacts),
            sent_at=self.clock.now()
        )
        try:
            await self.gateway.record_dispatch(record)
        except PersistenceFailureError as e:
            self.logger.error(f"Dispatch history for alert {alert.id} not recorded: {e}")

    async def _refresh_context(self, alert: SOSAlert):
        context = await self.snapshotter.snapshot()
        # Keep the last known position when the provider has nothing new
        if context.location is None:
            context.location = alert.location
        if context.battery_level is None:
            context.battery_level = alert.battery_level
        if context.network_type is None and context.is_connected is None:
            context.network_type = alert.network_type
            context.is_connected = alert.is_connected
        alert.apply_context(context)

    async def _report(self, user_id: str, error: Exception):
        if not self.error_callback:
            return
        try:
            result = self.error_callback(user_id, error)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.logger.error(f"Error in error callback: {e}")
