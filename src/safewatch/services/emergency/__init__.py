"""
Emergency Safety Service Module

Provides the safety check-in and emergency escalation engine:
- Check-in scheduling with overdue escalation
- Threat monitoring with automatic SOS
- Single active alert per user with rolling evidence capture
- Persistence of check-ins, alerts and dispatch history
"""

from .emergency_service import EmergencySafetyService, build_channels
from .checkin_scheduler import CheckInScheduler
from .coordinator import EmergencyEscalationCoordinator, EscalationSettings
from .threat_monitor import ThreatMonitor, ThreatDetector, MotionSensor, MotionThreatDetector
from .persistence import PersistenceGateway, SQLitePersistenceGateway
from .recorder import Recorder, IntervalRecorder, RecordingHandle
from .context import (
    ContextSnapshotter, LocationProvider, DeviceContext, StaticLocationProvider, StaticDeviceContext
)

__all__ = [
    'EmergencySafetyService',
    'build_channels',
    'CheckInScheduler',
    'EmergencyEscalationCoordinator',
    'EscalationSettings',
    'ThreatMonitor',
    'ThreatDetector',
    'MotionSensor',
    'MotionThreatDetector',
    'PersistenceGateway',
    'SQLitePersistenceGateway',
    'Recorder',
    'IntervalRecorder',
    'RecordingHandle',
    'ContextSnapshotter',
    'LocationProvider',
    'DeviceContext',
    'StaticLocationProvider',
    'StaticDeviceContext'
]
