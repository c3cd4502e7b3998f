"""
Safety Check-in Scheduling

Owns each user's single pending check-in:
- Scheduling a check-in with an absolute deadline
- Deadline tracking re-derived from the clock on every wake-up
- Completion, cancellation and restore after restart
- Exactly one escalation when a check-in becomes overdue
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from safewatch.core.clock import Clock
from safewatch.core.errors import AlreadyScheduledError, InvalidScheduleError, PersistenceFailureError
from safewatch.core.state import SafetyStateStore
from safewatch.models.safety import CheckIn, CheckInStatus, LocationData, TriggerSource
from .persistence import PersistenceGateway


EscalationTrigger = Callable[[TriggerSource, str], Awaitable[Any]]


class CheckInScheduler:
    """Manages pending check-ins and escalates the ones that go overdue"""

    def __init__(
        self,
        clock: Clock,
        state: SafetyStateStore,
        gateway: PersistenceGateway,
        on_overdue: EscalationTrigger,
        tick_interval: float = 30.0,
        error_callback: Optional[Callable[[str, Exception], Any]] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.clock = clock
        self.state = state
        self.gateway = gateway
        self.on_overdue = on_overdue
        self.tick_interval = tick_interval
        self.error_callback = error_callback

        self._check_ins: Dict[str, CheckIn] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def schedule(
        self,
        user_id: str,
        scheduled_time: datetime,
        location: Optional[LocationData] = None
    ) -> CheckIn:
        """
        Schedule a check-in for a user

        Args:
            user_id: User who promises to check in
            scheduled_time: Deadline; naive datetimes are taken as UTC
            location: Optional position at scheduling time

        Returns:
            The persisted pending CheckIn

        Raises:
            InvalidScheduleError: deadline is not in the future
            AlreadyScheduledError: the user already has a pending check-in
            PersistenceFailureError: the check-in could not be stored
        """
        if scheduled_time.tzinfo is None:
            scheduled_time = scheduled_time.replace(tzinfo=timezone.utc)

        if self.clock.seconds_until(scheduled_time) <= 0:
            raise InvalidScheduleError(f"Check-in time {scheduled_time.isoformat()} is not in the future")

        check_in_id = str(uuid.uuid4())
        existing = self.state.claim_check_in(user_id, check_in_id)
        if existing is not None:
            raise AlreadyScheduledError(user_id, existing)

        try:
            check_in = await self.gateway.create_check_in(user_id, scheduled_time, check_in_id, location)
        except PersistenceFailureError:
            self.state.transition_check_in(user_id, check_in_id, CheckInStatus.PENDING, None)
            raise

        self._arm(check_in)
        self.logger.info(
            f"Scheduled check-in {check_in.id} for user {user_id}, "
            f"due in {self.clock.seconds_until(scheduled_time):.0f}s"
        )
        return check_in

    async def tick(self, user_id: str) -> bool:
        """
        Re-evaluate the user's deadline now.

        Returns:
            True if this call moved the check-in to overdue
        """
        check_in = self._check_ins.get(user_id)
        if check_in is None:
            return False

        if self.clock.seconds_until(check_in.scheduled_time) > 0:
            return False

        return await self._fire(check_in)

    async def cancel(self, user_id: str) -> bool:
        """Cancel the pending check-in; False if there is none or it already fired"""
        check_in = self._check_ins.get(user_id)
        if check_in is None:
            return False

        if not self.state.transition_check_in(user_id, check_in.id, CheckInStatus.PENDING, None):
            self.logger.debug(f"Cancel of check-in {check_in.id} lost to a terminal transition")
            return False

        self._disarm(user_id)
        try:
            await self.gateway.delete_check_in(check_in.id, expected=CheckInStatus.PENDING)
        except PersistenceFailureError as e:
            self.logger.error(f"Check-in {check_in.id} cancelled but its row could not be removed: {e}")
            raise

        self.logger.info(f"Cancelled check-in {check_in.id} for user {user_id}")
        return True

    async def complete(self, user_id: str) -> bool:
        """User confirmed they are safe; False if there is nothing pending"""
        check_in = self._check_ins.get(user_id)
        if check_in is None:
            return False

        if not self.state.transition_check_in(user_id, check_in.id, CheckInStatus.PENDING, CheckInStatus.COMPLETED):
            return False

        self._disarm(user_id)
        check_in.status = CheckInStatus.COMPLETED
        check_in.completed_at = self.clock.now()
        try:
            await self.gateway.update_check_in_status(
                check_in.id,
                CheckInStatus.COMPLETED,
                expected=CheckInStatus.PENDING,
                completed_at=check_in.completed_at
            )
        except PersistenceFailureError as e:
            self.logger.error(f"Check-in {check_in.id} completed but not recorded: {e}")
            raise

        self.logger.info(f"User {user_id} completed check-in {check_in.id}")
        return True

    async def restore(self, user_id: Optional[str] = None) -> int:
        """
        Re-arm pending check-ins found in storage.

        A check-in whose deadline passed while the process was down is
        escalated on its first evaluation. A stored row that this process
        already completed or escalated (its status write failed) is not
        re-armed; its status write is attempted again instead.

        Returns:
            Number of check-ins re-armed
        """
        restored = 0
        for check_in in self.gateway.list_pending(user_id):
            if check_in.scheduled_time.tzinfo is None:
                check_in.scheduled_time = check_in.scheduled_time.replace(tzinfo=timezone.utc)

            state = self.state.get(check_in.user_id)
            if state.check_in_id == check_in.id and state.check_in_status in (
                CheckInStatus.OVERDUE, CheckInStatus.COMPLETED
            ):
                self.logger.warning(
                    f"Stored check-in {check_in.id} is still pending but was already "
                    f"{state.check_in_status.value}; not re-arming"
                )
                check_in.status = state.check_in_status
                await self._record_status(check_in)
                continue

            existing = self.state.claim_check_in(check_in.user_id, check_in.id)
            if existing is not None:
                if existing != check_in.id:
                    self.logger.warning(
                        f"Skipping stored check-in {check_in.id}: user {check_in.user_id} "
                        f"already has {existing}"
                    )
                continue

            if self.clock.seconds_until(check_in.scheduled_time) <= 0:
                self.logger.warning(f"Check-in {check_in.id} went overdue while offline")

            self._arm(check_in)
            restored += 1

        if restored:
            self.logger.info(f"Restored {restored} pending check-in(s)")
        return restored

    def remaining(self, user_id: str) -> Optional[float]:
        """Seconds until the user's pending deadline, floored at 0"""
        check_in = self._check_ins.get(user_id)
        if check_in is None:
            return None
        return max(0.0, self.clock.seconds_until(check_in.scheduled_time))

    def get_active(self, user_id: str) -> Optional[CheckIn]:
        return self._check_ins.get(user_id)

    async def stop(self):
        """Disarm every deadline task; pending rows stay for restore()"""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _arm(self, check_in: CheckIn):
        self._check_ins[check_in.user_id] = check_in
        self._tasks[check_in.user_id] = asyncio.create_task(self._deadline_loop(check_in))

    def _disarm(self, user_id: str):
        self._check_ins.pop(user_id, None)
        task = self._tasks.pop(user_id, None)
        if task and task is not asyncio.current_task():
            task.cancel()

    async def _deadline_loop(self, check_in: CheckIn):
        while True:
            remaining = self.clock.seconds_until(check_in.scheduled_time)
            if remaining <= 0:
                await self._fire(check_in)
                return
            await self.clock.sleep(min(remaining, self.tick_interval))

    async def _fire(self, check_in: CheckIn) -> bool:
        user_id = check_in.user_id
        if not self.state.transition_check_in(user_id, check_in.id, CheckInStatus.PENDING, CheckInStatus.OVERDUE):
            return False

        check_in.status = CheckInStatus.OVERDUE
        self._disarm(user_id)
        self.logger.warning(f"Check-in {check_in.id} for user {user_id} is overdue, escalating")

        recorded = await self._record_status(check_in)

        try:
            await self.on_overdue(TriggerSource.AI, user_id)
        except Exception as e:
            self.logger.critical(f"Escalation for overdue check-in {check_in.id} failed: {e}")
            await self._report(user_id, e)

        if not recorded:
            await self._record_status(check_in)

        return True

    async def _record_status(self, check_in: CheckIn) -> bool:
        """Store a terminal status for a row still marked pending; failures are reported"""
        try:
            await self.gateway.update_check_in_status(
                check_in.id,
                check_in.status,
                expected=CheckInStatus.PENDING,
                completed_at=check_in.completed_at
            )
            return True
        except PersistenceFailureError as e:
            self.logger.error(f"Could not record {check_in.status.value} check-in {check_in.id}: {e}")
            await self._report(check_in.user_id, e)
            return False

    async def _report(self, user_id: str, error: Exception):
        if not self.error_callback:
            return
        try:
            result = self.error_callback(user_id, error)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.logger.error(f"Error in error callback: {e}")
