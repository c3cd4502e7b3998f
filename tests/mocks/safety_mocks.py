"""
Fakes for the collaborators of the safety engine.
"""
import asyncio
from dataclasses import replace
from typing import Dict, List, Optional

from safewatch.core.errors import (
    PermissionDeniedError, PersistenceFailureError, TransientNetworkError
)
from safewatch.models.safety import (
    AlertPayload, AlertStatus, AudioSegment, ChannelType, CheckIn, CheckInStatus,
    DispatchRecord, EmergencyContact, LocationData, MotionSample, SendResult,
    SOSAlert, ThreatDetection
)
from safewatch.services.emergency.persistence import PersistenceGateway
from safewatch.services.emergency.recorder import Recorder, RecordingHandle
from safewatch.services.emergency.threat_monitor import MotionSensor, ThreatDetector
from safewatch.services.notifications.base import NotificationChannel


class MockChannel(NotificationChannel):
    """
    Scriptable channel.

    `behaviors` maps contact id to a list of outcomes consumed one per
    attempt; the last outcome repeats. Outcomes: "ok", "fail", "transient",
    "hang", "boom".
    """

    def __init__(self, channel_type: ChannelType, behaviors: Optional[Dict[str, List[str]]] = None,
                 default: str = "ok"):
        self.channel_type = channel_type
        self.behaviors = behaviors or {}
        self.default = default
        self.calls: List[tuple] = []
        self.started = False
        self.stopped = False

    def supports(self, contact: EmergencyContact) -> bool:
        if self.channel_type == ChannelType.EMAIL:
            return bool(contact.email)
        return bool(contact.whatsapp)

    async def send(self, contact: EmergencyContact, payload: AlertPayload) -> SendResult:
        self.calls.append((contact.id, payload.alert.id, payload.sequence))
        outcomes = self.behaviors.get(contact.id, [self.default])
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]

        if outcome == "ok":
            return SendResult(success=True)
        if outcome == "fail":
            return SendResult(success=False, error=f"{self.name} rejected")
        if outcome == "transient":
            raise TransientNetworkError(f"{self.name} unavailable")
        if outcome == "hang":
            await asyncio.sleep(3600)
        raise RuntimeError(f"{self.name} exploded")

    def calls_for(self, contact_id: str) -> int:
        return sum(1 for call in self.calls if call[0] == contact_id)

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True


class InMemoryGateway(PersistenceGateway):
    """PersistenceGateway keeping rows in dictionaries"""

    def __init__(self):
        self.check_ins: Dict[str, CheckIn] = {}
        self.alerts: Dict[str, SOSAlert] = {}
        self.contacts: Dict[str, List[EmergencyContact]] = {}
        self.dispatches: List[DispatchRecord] = []
        self.fail_alert_writes = False
        self.fail_check_in_writes = False
        self.fail_status_updates = False
        self.create_alert_calls = 0

    def add_contact(self, user_id: str, contact: EmergencyContact):
        contact.user_id = user_id
        self.contacts.setdefault(user_id, []).append(contact)

    async def create_check_in(self, user_id, scheduled_time, check_in_id=None, location=None) -> CheckIn:
        if self.fail_check_in_writes:
            raise PersistenceFailureError("create_check_in")
        check_in = CheckIn(user_id=user_id, scheduled_time=scheduled_time, location=location)
        if check_in_id:
            check_in.id = check_in_id
        self.check_ins[check_in.id] = replace(check_in)
        return check_in

    async def update_check_in_status(self, check_in_id, status, expected=None, completed_at=None) -> bool:
        if self.fail_status_updates:
            raise PersistenceFailureError("update_check_in_status")
        check_in = self.check_ins.get(check_in_id)
        if check_in is None or (expected is not None and check_in.status != expected):
            return False
        check_in.status = status
        check_in.completed_at = completed_at
        return True

    async def delete_check_in(self, check_in_id, expected=None) -> bool:
        check_in = self.check_ins.get(check_in_id)
        if check_in is None or (expected is not None and check_in.status != expected):
            return False
        del self.check_ins[check_in_id]
        return True

    def get_check_in(self, check_in_id) -> Optional[CheckIn]:
        check_in = self.check_ins.get(check_in_id)
        return replace(check_in) if check_in else None

    def list_pending(self, user_id=None) -> List[CheckIn]:
        return [
            replace(c) for c in self.check_ins.values()
            if c.status == CheckInStatus.PENDING and (user_id is None or c.user_id == user_id)
        ]

    async def create_alert(self, alert: SOSAlert) -> SOSAlert:
        self.create_alert_calls += 1
        if self.fail_alert_writes:
            raise PersistenceFailureError("create_alert")
        self.alerts[alert.id] = alert
        return alert

    async def update_alert_status(self, alert_id, status, resolved_at=None) -> bool:
        alert = self.alerts.get(alert_id)
        if alert is None:
            return False
        alert.status = status
        alert.resolved_at = resolved_at
        return True

    def get_alert(self, alert_id) -> Optional[SOSAlert]:
        return self.alerts.get(alert_id)

    def list_active_alerts(self, user_id=None) -> List[SOSAlert]:
        return [
            a for a in self.alerts.values()
            if a.status == AlertStatus.ACTIVE and (user_id is None or a.user_id == user_id)
        ]

    def get_emergency_contacts(self, user_id) -> List[EmergencyContact]:
        return list(self.contacts.get(user_id, []))

    async def record_dispatch(self, record: DispatchRecord) -> DispatchRecord:
        self.dispatches.append(record)
        return record

    def list_dispatches(self, alert_id) -> List[DispatchRecord]:
        return [d for d in self.dispatches if d.alert_id == alert_id]


class MockRecorder(Recorder):
    """Recorder whose segments are emitted by the test"""

    def __init__(self, deny_permission: bool = False):
        self.deny_permission = deny_permission
        self.callbacks: Dict[str, object] = {}
        self.sequences: Dict[str, int] = {}
        self.started: List[str] = []
        self.stopped: List[str] = []

    async def start_segment_loop(self, alert_id, on_segment_ready, start_sequence=1) -> RecordingHandle:
        if self.deny_permission:
            raise PermissionDeniedError("microphone")
        self.callbacks[alert_id] = on_segment_ready
        self.sequences[alert_id] = start_sequence
        self.started.append(alert_id)
        return RecordingHandle(alert_id=alert_id, start_sequence=start_sequence)

    async def stop(self, handle: RecordingHandle) -> None:
        self.stopped.append(handle.alert_id)
        self.callbacks.pop(handle.alert_id, None)

    async def emit(self, alert_id: str, uri: Optional[str] = "file:///tmp/segment.m4a") -> bool:
        callback = self.callbacks.get(alert_id)
        if callback is None:
            return False
        sequence = self.sequences[alert_id]
        self.sequences[alert_id] = sequence + 1
        await callback(AudioSegment(alert_id=alert_id, sequence=sequence, uri=uri, duration_seconds=60))
        return True


class MockMotionSensor(MotionSensor):
    def __init__(self, samples: Optional[List[MotionSample]] = None, deny_permission: bool = False):
        self.samples = list(samples or [])
        self.deny_permission = deny_permission
        self.started = False

    async def start(self):
        if self.deny_permission:
            raise PermissionDeniedError("motion")
        self.started = True

    async def read(self) -> Optional[MotionSample]:
        return self.samples.pop(0) if self.samples else None


class MockDetector(ThreatDetector):
    def __init__(self, detections: Optional[List[ThreatDetection]] = None):
        self.detections = list(detections or [])
        self.samples_taken = 0
        self.stopped = False

    async def sample(self) -> Optional[ThreatDetection]:
        self.samples_taken += 1
        return self.detections.pop(0) if self.detections else None

    async def stop(self):
        self.stopped = True


def make_contact(contact_id: str, email: bool = True, whatsapp: bool = True) -> EmergencyContact:
    return EmergencyContact(
        id=contact_id,
        name=f"Contact {contact_id}",
        email=f"{contact_id}@example.com" if email else None,
        whatsapp="+1 (555) 010-0000" if whatsapp else None
    )


SAMPLE_LOCATION = LocationData(latitude=40.7128, longitude=-74.006, accuracy=5.0, address="New York, NY")
