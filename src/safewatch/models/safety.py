"""
Safety data models for SafeWatch

Defines check-ins, SOS alerts, threat detections, emergency contacts and the
notification result structures used throughout the engine.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class CheckInStatus(Enum):
    """Safety check-in status"""
    PENDING = "pending"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class AlertStatus(Enum):
    """SOS alert status"""
    ACTIVE = "active"
    RESOLVED = "resolved"


class TriggerSource(Enum):
    """Origin of an escalation"""
    MANUAL = "manual"    # SOS button
    VOICE = "voice"      # Voice command
    AI = "ai"            # Threat detection or overdue check-in


class ThreatType(Enum):
    """Kinds of threat the monitor can report"""
    FALL = "fall"
    IMPACT = "impact"
    SUDDEN_MOVEMENT = "sudden_movement"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    DISTRESS_AUDIO = "distress_audio"


class ChannelType(Enum):
    """Notification channels in priority order"""
    EMAIL = "email"
    WHATSAPP = "whatsapp"


@dataclass
class LocationData:
    """Geographic position with optional reverse-geocoded address"""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    address: Optional[str] = None

    @property
    def maps_url(self) -> str:
        return f"https://www.google.com/maps?q={self.latitude},{self.longitude}"

    def describe(self) -> str:
        """Address if known, otherwise coordinates"""
        if self.address:
            return self.address
        return f"{self.latitude:.6f}, {self.longitude:.6f}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'accuracy': self.accuracy,
            'address': self.address,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['LocationData']:
        if not data or data.get('latitude') is None or data.get('longitude') is None:
            return None
        return cls(
            latitude=float(data['latitude']),
            longitude=float(data['longitude']),
            accuracy=data.get('accuracy'),
            address=data.get('address'),
        )


@dataclass
class CheckIn:
    """A user-scheduled promise to confirm safety by a deadline"""
    user_id: str
    scheduled_time: datetime
    id: str = field(default_factory=_new_id)
    status: CheckInStatus = CheckInStatus.PENDING
    created_at: datetime = field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None
    location: Optional[LocationData] = None

    def is_pending(self) -> bool:
        return self.status == CheckInStatus.PENDING


@dataclass
class AlertContext:
    """Best-effort device context captured when an alert opens"""
    location: Optional[LocationData] = None
    battery_level: Optional[int] = None
    network_type: Optional[str] = None
    is_connected: Optional[bool] = None
    captured_at: datetime = field(default_factory=_utc_now)


@dataclass
class SOSAlert:
    """An emergency alert; at most one is active per user"""
    user_id: str
    alert_type: TriggerSource
    id: str = field(default_factory=_new_id)
    status: AlertStatus = AlertStatus.ACTIVE
    triggered_at: datetime = field(default_factory=_utc_now)
    location: Optional[LocationData] = None
    battery_level: Optional[int] = None
    network_type: Optional[str] = None
    is_connected: Optional[bool] = None
    resolved_at: Optional[datetime] = None
    user_name: str = "User"

    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE

    def apply_context(self, context: AlertContext) -> None:
        self.location = context.location
        self.battery_level = context.battery_level
        self.network_type = context.network_type
        self.is_connected = context.is_connected


@dataclass
class ThreatDetection:
    """A single detector output, consumed immediately"""
    type: ThreatType
    confidence: float
    timestamp: datetime = field(default_factory=_utc_now)
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1], got {self.confidence}")


@dataclass
class Vector3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)


@dataclass
class MotionSample:
    """Raw accelerometer/gyroscope reading"""
    acceleration: Vector3
    rotation_rate: Vector3
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass
class EmergencyContact:
    """Contact owned by account data; read-only to the engine"""
    id: str
    name: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    whatsapp: Optional[str] = None


@dataclass
class AudioSegment:
    """One captured slice of audio evidence for an alert"""
    alert_id: str
    sequence: int
    uri: Optional[str] = None
    duration_seconds: float = 0.0
    captured_at: datetime = field(default_factory=_utc_now)

    @property
    def has_audio(self) -> bool:
        return bool(self.uri)


@dataclass
class AlertPayload:
    """Everything a channel needs to render an alert notification"""
    alert: SOSAlert
    segment: Optional[AudioSegment] = None

    @property
    def sequence(self) -> int:
        return self.segment.sequence if self.segment else 0


@dataclass
class SendResult:
    """Outcome of one channel send attempt"""
    success: bool
    error: Optional[str] = None
    provider_status: Optional[int] = None


@dataclass
class NotificationResult:
    """Outcome of one channel for one contact after retries"""
    contact_id: str
    channel: ChannelType
    success: bool
    error: Optional[str] = None
    attempts: int = 0


@dataclass
class FanoutReport:
    """Aggregated results of one fan-out cycle"""
    alert_id: str
    results: List[NotificationResult] = field(default_factory=list)
    contact_outcomes: Dict[str, bool] = field(default_factory=dict)
    sequence: int = 0

    @property
    def succeeded_contacts(self) -> List[str]:
        return [cid for cid, ok in self.contact_outcomes.items() if ok]

    @property
    def failed_contacts(self) -> List[str]:
        return [cid for cid, ok in self.contact_outcomes.items() if not ok]

    @property
    def is_total_failure(self) -> bool:
        return not self.succeeded_contacts

    @property
    def is_partial_failure(self) -> bool:
        """Some contact or channel failed but at least one contact was reached"""
        if self.is_total_failure:
            return False
        return bool(self.failed_contacts) or any(not r.success for r in self.results)


@dataclass
class DispatchRecord:
    """History row for a completed fan-out cycle"""
    alert_id: str
    user_id: str
    sequence: int
    id: str = field(default_factory=_new_id)
    audio_uri: Optional[str] = None
    location: Optional[LocationData] = None
    battery_level: Optional[int] = None
    network_type: Optional[str] = None
    contacts_notified: int = 0
    contacts_failed: int = 0
    sent_at: datetime = field(default_factory=_utc_now)
