"""
Persistence Gateway

Durable storage for check-ins, SOS alerts, emergency contacts and the
dispatch history of each alert. Writes are coroutines, retried a bounded number
of times and then surfaced as PersistenceFailureError; reads log and degrade
to an empty result.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from safewatch.core.clock import utc_now
from safewatch.core.database import DatabaseError, DatabaseManager
from safewatch.core.errors import PersistenceFailureError
from safewatch.models.safety import (
    AlertStatus, CheckIn, CheckInStatus, DispatchRecord, EmergencyContact,
    LocationData, SOSAlert, TriggerSource
)


T = TypeVar('T')


class PersistenceGateway(ABC):
    """Storage interface used by the scheduler and the coordinator"""

    @abstractmethod
    async def create_check_in(
        self,
        user_id: str,
        scheduled_time: datetime,
        check_in_id: Optional[str] = None,
        location: Optional[LocationData] = None
    ) -> CheckIn:
        pass

    @abstractmethod
    async def update_check_in_status(
        self,
        check_in_id: str,
        status: CheckInStatus,
        expected: Optional[CheckInStatus] = None,
        completed_at: Optional[datetime] = None
    ) -> bool:
        pass

    @abstractmethod
    async def delete_check_in(self, check_in_id: str, expected: Optional[CheckInStatus] = None) -> bool:
        pass

    @abstractmethod
    def get_check_in(self, check_in_id: str) -> Optional[CheckIn]:
        pass

    @abstractmethod
    def list_pending(self, user_id: Optional[str] = None) -> List[CheckIn]:
        """Pending check-ins for one user, or for every user when None"""
        pass

    @abstractmethod
    async def create_alert(self, alert: SOSAlert) -> SOSAlert:
        pass

    @abstractmethod
    async def update_alert_status(
        self,
        alert_id: str,
        status: AlertStatus,
        resolved_at: Optional[datetime] = None
    ) -> bool:
        pass

    @abstractmethod
    def get_alert(self, alert_id: str) -> Optional[SOSAlert]:
        pass

    @abstractmethod
    def list_active_alerts(self, user_id: Optional[str] = None) -> List[SOSAlert]:
        pass

    @abstractmethod
    def get_emergency_contacts(self, user_id: str) -> List[EmergencyContact]:
        pass

    @abstractmethod
    async def record_dispatch(self, record: DispatchRecord) -> DispatchRecord:
        pass

    @abstractmethod
    def list_dispatches(self, alert_id: str) -> List[DispatchRecord]:
        pass


class SQLitePersistenceGateway(PersistenceGateway):
    """PersistenceGateway backed by the shared SQLite DatabaseManager"""

    def __init__(self, db: DatabaseManager, max_retries: int = 3, retry_delay: float = 0.5):
        self.logger = logging.getLogger(__name__)
        self.db = db
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    # Check-ins

    async def create_check_in(
        self,
        user_id: str,
        scheduled_time: datetime,
        check_in_id: Optional[str] = None,
        location: Optional[LocationData] = None
    ) -> CheckIn:
        check_in = CheckIn(user_id=user_id, scheduled_time=scheduled_time, location=location)
        if check_in_id:
            check_in.id = check_in_id

        await self._write(
            "create_check_in",
            lambda: self.db.execute_update(
                """INSERT INTO check_ins
                   (id, user_id, scheduled_time, status, location, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    check_in.id,
                    check_in.user_id,
                    check_in.scheduled_time.isoformat(),
                    check_in.status.value,
                    _dump_location(check_in.location),
                    check_in.created_at.isoformat()
                )
            )
        )
        self.logger.info(f"Created check-in {check_in.id} for user {user_id} due {scheduled_time}")
        return check_in

    async def update_check_in_status(
        self,
        check_in_id: str,
        status: CheckInStatus,
        expected: Optional[CheckInStatus] = None,
        completed_at: Optional[datetime] = None
    ) -> bool:
        query = "UPDATE check_ins SET status = ?, completed_at = ?, updated_at = ? WHERE id = ?"
        params = [
            status.value,
            completed_at.isoformat() if completed_at else None,
            utc_now().isoformat(),
            check_in_id
        ]
        if expected is not None:
            query += " AND status = ?"
            params.append(expected.value)

        rows = await self._write("update_check_in_status", lambda: self.db.execute_update(query, tuple(params)))
        return rows > 0

    async def delete_check_in(self, check_in_id: str, expected: Optional[CheckInStatus] = None) -> bool:
        query = "DELETE FROM check_ins WHERE id = ?"
        params = [check_in_id]
        if expected is not None:
            query += " AND status = ?"
            params.append(expected.value)

        rows = await self._write("delete_check_in", lambda: self.db.execute_update(query, tuple(params)))
        return rows > 0

    def get_check_in(self, check_in_id: str) -> Optional[CheckIn]:
        try:
            rows = self.db.execute_query("SELECT * FROM check_ins WHERE id = ?", (check_in_id,))
            return self._row_to_check_in(rows[0]) if rows else None
        except DatabaseError as e:
            self.logger.error(f"Failed to get check-in {check_in_id}: {e}")
            return None

    def list_pending(self, user_id: Optional[str] = None) -> List[CheckIn]:
        query = "SELECT * FROM check_ins WHERE status = ?"
        params = [CheckInStatus.PENDING.value]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY scheduled_time"

        try:
            rows = self.db.execute_query(query, tuple(params))
            return [self._row_to_check_in(row) for row in rows]
        except DatabaseError as e:
            self.logger.error(f"Failed to list pending check-ins: {e}")
            return []

    # Alerts

    async def create_alert(self, alert: SOSAlert) -> SOSAlert:
        await self._write(
            "create_alert",
            lambda: self.db.execute_update(
                """INSERT INTO sos_alerts
                   (id, user_id, user_name, alert_type, status, location, battery_level,
                    network_type, is_connected, triggered_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    alert.id,
                    alert.user_id,
                    alert.user_name,
                    alert.alert_type.value,
                    alert.status.value,
                    _dump_location(alert.location),
                    alert.battery_level,
                    alert.network_type,
                    alert.is_connected,
                    alert.triggered_at.isoformat()
                )
            )
        )
        self.logger.info(f"Recorded SOS alert {alert.id} ({alert.alert_type.value}) for user {alert.user_id}")
        return alert

    async def update_alert_status(
        self,
        alert_id: str,
        status: AlertStatus,
        resolved_at: Optional[datetime] = None
    ) -> bool:
        rows = await self._write(
            "update_alert_status",
            lambda: self.db.execute_update(
                "UPDATE sos_alerts SET status = ?, resolved_at = ?, updated_at = ? WHERE id = ?",
                (
                    status.value,
                    resolved_at.isoformat() if resolved_at else None,
                    utc_now().isoformat(),
                    alert_id
                )
            )
        )
        return rows > 0

    def get_alert(self, alert_id: str) -> Optional[SOSAlert]:
        try:
            rows = self.db.execute_query("SELECT * FROM sos_alerts WHERE id = ?", (alert_id,))
            return self._row_to_alert(rows[0]) if rows else None
        except DatabaseError as e:
            self.logger.error(f"Failed to get alert {alert_id}: {e}")
            return None

    def list_active_alerts(self, user_id: Optional[str] = None) -> List[SOSAlert]:
        query = "SELECT * FROM sos_alerts WHERE status = ?"
        params = [AlertStatus.ACTIVE.value]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY triggered_at DESC"

        try:
            rows = self.db.execute_query(query, tuple(params))
            return [self._row_to_alert(row) for row in rows]
        except DatabaseError as e:
            self.logger.error(f"Failed to list active alerts: {e}")
            return []

    # Contacts

    def get_emergency_contacts(self, user_id: str) -> List[EmergencyContact]:
        try:
            rows = self.db.execute_query(
                "SELECT * FROM emergency_contacts WHERE user_id = ? ORDER BY created_at, name",
                (user_id,)
            )
            return [
                EmergencyContact(
                    id=row['id'],
                    name=row['name'],
                    user_id=row['user_id'],
                    email=row['email'],
                    whatsapp=row['whatsapp']
                )
                for row in rows
            ]
        except DatabaseError as e:
            self.logger.error(f"Failed to get emergency contacts for {user_id}: {e}")
            return []

    async def save_emergency_contact(self, contact: EmergencyContact) -> EmergencyContact:
        """Insert or replace a contact row (account data import)"""
        await self._write(
            "save_emergency_contact",
            lambda: self.db.execute_update(
                """INSERT OR REPLACE INTO emergency_contacts (id, user_id, name, email, whatsapp)
                   VALUES (?, ?, ?, ?, ?)""",
                (contact.id, contact.user_id, contact.name, contact.email, contact.whatsapp)
            )
        )
        return contact

    # Dispatch history

    async def record_dispatch(self, record: DispatchRecord) -> DispatchRecord:
        await self._write(
            "record_dispatch",
            lambda: self.db.execute_update(
                """INSERT INTO sos_dispatches
                   (id, alert_id, user_id, sequence, audio_uri, location, battery_level,
                    network_type, contacts_notified, contacts_failed, sent_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.alert_id,
                    record.user_id,
                    record.sequence,
                    record.audio_uri,
                    _dump_location(record.location),
                    record.battery_level,
                    record.network_type,
                    record.contacts_notified,
                    record.contacts_failed,
                    record.sent_at.isoformat()
                )
            )
        )
        return record

    def list_dispatches(self, alert_id: str) -> List[DispatchRecord]:
        try:
            rows = self.db.execute_query(
                "SELECT * FROM sos_dispatches WHERE alert_id = ? ORDER BY sequence",
                (alert_id,)
            )
            return [self._row_to_dispatch(row) for row in rows]
        except DatabaseError as e:
            self.logger.error(f"Failed to list dispatches for alert {alert_id}: {e}")
            return []

    # Helpers

    async def _write(self, operation: str, func: Callable[[], T]) -> T:
        """Run a write, retrying DatabaseError up to max_retries extra times"""
        last_error = None
        for attempt in range(self.max_retries + 1):
            try:
                return func()
            except DatabaseError as e:
                last_error = e
                self.logger.warning(
                    f"{operation} failed (attempt {attempt + 1}/{self.max_retries + 1}): {e}"
                )
                if attempt < self.max_retries and self.retry_delay > 0:
                    await asyncio.sleep(self.retry_delay)

        self.logger.critical(f"{operation} failed after {self.max_retries + 1} attempts: {last_error}")
        raise PersistenceFailureError(operation, last_error)

    def _row_to_check_in(self, row) -> CheckIn:
        return CheckIn(
            id=row['id'],
            user_id=row['user_id'],
            scheduled_time=datetime.fromisoformat(row['scheduled_time']),
            status=CheckInStatus(row['status']),
            created_at=datetime.fromisoformat(row['created_at']),
            completed_at=datetime.fromisoformat(row['completed_at']) if row['completed_at'] else None,
            location=_load_location(row['location'])
        )

    def _row_to_alert(self, row) -> SOSAlert:
        return SOSAlert(
            id=row['id'],
            user_id=row['user_id'],
            user_name=row['user_name'] or "User",
            alert_type=TriggerSource(row['alert_type']),
            status=AlertStatus(row['status']),
            triggered_at=datetime.fromisoformat(row['triggered_at']),
            location=_load_location(row['location']),
            battery_level=row['battery_level'],
            network_type=row['network_type'],
            is_connected=bool(row['is_connected']) if row['is_connected'] is not None else None,
            resolved_at=datetime.fromisoformat(row['resolved_at']) if row['resolved_at'] else None
        )

    def _row_to_dispatch(self, row) -> DispatchRecord:
        return DispatchRecord(
            id=row['id'],
            alert_id=row['alert_id'],
            user_id=row['user_id'],
            sequence=row['sequence'],
            audio_uri=row['audio_uri'],
            location=_load_location(row['location']),
            battery_level=row['battery_level'],
            network_type=row['network_type'],
            contacts_notified=row['contacts_notified'],
            contacts_failed=row['contacts_failed'],
            sent_at=datetime.fromisoformat(row['sent_at'])
        )


def _dump_location(location: Optional[LocationData]) -> Optional[str]:
    return json.dumps(location.to_dict()) if location else None


def _load_location(value: Optional[str]) -> Optional[LocationData]:
    if not value:
        return None
    return LocationData.from_dict(json.loads(value))
