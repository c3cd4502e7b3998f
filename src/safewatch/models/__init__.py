"""
Data models for SafeWatch

Contains all data classes used throughout the engine.
"""

from .safety import (
    CheckIn, CheckInStatus, SOSAlert, AlertStatus, TriggerSource,
    ThreatDetection, ThreatType, MotionSample, Vector3,
    EmergencyContact, LocationData, AlertContext, AudioSegment,
    AlertPayload, ChannelType, SendResult, NotificationResult,
    FanoutReport, DispatchRecord
)

__all__ = [
    'CheckIn', 'CheckInStatus', 'SOSAlert', 'AlertStatus', 'TriggerSource',
    'ThreatDetection', 'ThreatType', 'MotionSample', 'Vector3',
    'EmergencyContact', 'LocationData', 'AlertContext', 'AudioSegment',
    'AlertPayload', 'ChannelType', 'SendResult', 'NotificationResult',
    'FanoutReport', 'DispatchRecord'
]
