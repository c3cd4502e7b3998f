"""
Core module for SafeWatch

Contains configuration management, logging, database access, the clock
abstraction and the per-user safety state store.
"""

from .clock import Clock, SystemClock, ManualClock
from .state import SafetyStateStore, UserSafetyState
from .errors import (
    SafeWatchError,
    TransientNetworkError,
    PermissionDeniedError,
    PersistenceFailureError,
    TotalNotificationFailureError,
    AlreadyScheduledError,
    InvalidScheduleError,
)

__all__ = [
    'Clock',
    'SystemClock',
    'ManualClock',
    'SafetyStateStore',
    'UserSafetyState',
    'SafeWatchError',
    'TransientNetworkError',
    'PermissionDeniedError',
    'PersistenceFailureError',
    'TotalNotificationFailureError',
    'AlreadyScheduledError',
    'InvalidScheduleError',
]
