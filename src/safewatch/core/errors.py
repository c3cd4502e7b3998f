"""
Error taxonomy for SafeWatch

Transient and partial failures are recovered locally. Anything that would
mean an emergency alert effectively vanished is raised to the caller.
"""

from typing import Optional


class SafeWatchError(Exception):
    """Base class for all SafeWatch errors"""
    pass


class TransientNetworkError(SafeWatchError):
    """Retryable network failure (timeouts, refused connections, 5xx/429)"""
    pass


class PermissionDeniedError(SafeWatchError):
    """A device permission (microphone, location, motion) was refused"""

    def __init__(self, permission: str, message: Optional[str] = None):
        self.permission = permission
        super().__init__(message or f"Permission denied: {permission}")


class PersistenceFailureError(SafeWatchError):
    """A check-in or alert row could not be durably recorded"""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Persistence failed during {operation}{detail}")


class TotalNotificationFailureError(SafeWatchError):
    """No emergency contact could be reached on any channel"""

    def __init__(self, report, reason: str = "all contacts failed"):
        self.report = report
        self.reason = reason
        super().__init__(f"Could not notify any emergency contact: {reason}")


class AlreadyScheduledError(SafeWatchError):
    """The user already has a pending check-in"""

    def __init__(self, user_id: str, check_in_id: str):
        self.user_id = user_id
        self.check_in_id = check_in_id
        super().__init__(f"User {user_id} already has pending check-in {check_in_id}")


class InvalidScheduleError(SafeWatchError, ValueError):
    """Requested check-in time is not in the future"""
    pass
