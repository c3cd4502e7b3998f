"""
Per-user safety state

Holds the only mutable shared state of the engine: the user's pending
check-in and the user's active alert. Both are changed exclusively through
the compare-and-set primitives below.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

from safewatch.models.safety import CheckInStatus


@dataclass
class UserSafetyState:
    """Snapshot of one user's check-in and alert slots"""
    user_id: str
    check_in_id: Optional[str] = None
    check_in_status: Optional[CheckInStatus] = None
    active_alert_id: Optional[str] = None

    @property
    def has_pending_check_in(self) -> bool:
        return self.check_in_status == CheckInStatus.PENDING


class SafetyStateStore:
    """Thread-safe store of UserSafetyState records keyed by user id"""

    def __init__(self):
        self._states: Dict[str, UserSafetyState] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def get(self, user_id: str) -> UserSafetyState:
        """Return a copy of the user's state"""
        with self._lock:
            return replace(self._state(user_id))

    def claim_check_in(self, user_id: str, check_in_id: str) -> Optional[str]:
        """
        Reserve the user's check-in slot.

        Returns:
            None if the slot was claimed, otherwise the id of the check-in
            that is already pending
        """
        with self._lock:
            state = self._state(user_id)
            if state.check_in_status == CheckInStatus.PENDING:
                return state.check_in_id
            state.check_in_id = check_in_id
            state.check_in_status = CheckInStatus.PENDING
            return None

    def transition_check_in(
        self,
        user_id: str,
        check_in_id: str,
        expected: CheckInStatus,
        new: Optional[CheckInStatus]
    ) -> bool:
        """
        Atomically move a check-in from `expected` to `new`.

        A `new` of None removes the check-in from the slot (cancel). Only one
        of several racing callers can succeed for the same expected state.
        """
        with self._lock:
            state = self._state(user_id)
            if state.check_in_id != check_in_id or state.check_in_status != expected:
                return False
            if new is None:
                state.check_in_id = None
                state.check_in_status = None
            else:
                state.check_in_status = new
            return True

    def claim_alert(self, user_id: str, alert_id: str) -> Tuple[bool, str]:
        """
        Reserve the user's alert slot.

        Returns:
            (True, alert_id) when claimed, (False, existing_id) when an alert
            is already active
        """
        with self._lock:
            state = self._state(user_id)
            if state.active_alert_id is not None:
                return False, state.active_alert_id
            state.active_alert_id = alert_id
            return True, alert_id

    def release_alert(self, user_id: str, alert_id: str) -> bool:
        """Free the alert slot if it still holds `alert_id`"""
        with self._lock:
            state = self._state(user_id)
            if state.active_alert_id != alert_id:
                return False
            state.active_alert_id = None
            return True

    def active_alert(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._state(user_id).active_alert_id

    def _state(self, user_id: str) -> UserSafetyState:
        state = self._states.get(user_id)
        if state is None:
            state = UserSafetyState(user_id=user_id)
            self._states[user_id] = state
        return state
