"""
Unit tests for the SQLite persistence gateway and database manager
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from safewatch.core.database import DatabaseError, DatabaseManager, get_database, initialize_database
from safewatch.core.errors import PersistenceFailureError
from safewatch.models.safety import (
    AlertStatus, CheckInStatus, DispatchRecord, EmergencyContact, SOSAlert, TriggerSource
)
from safewatch.services.emergency.persistence import SQLitePersistenceGateway
from tests.mocks.safety_mocks import SAMPLE_LOCATION


DUE = datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc)


class TestDatabaseManager:
    """Test schema creation and migrations"""

    def test_migrations_applied(self, db_manager):
        versions = [row['version'] for row in db_manager.execute_query("SELECT version FROM migrations")]
        assert versions == [1, 2]

    def test_reopen_does_not_rerun_migrations(self, db_manager, temp_dir):
        reopened = DatabaseManager(str(temp_dir / "safewatch_test.db"))
        rows = reopened.execute_query("SELECT COUNT(*) AS n FROM migrations")
        assert rows[0]['n'] == 2
        reopened.close()

    def test_stats(self, db_manager):
        stats = db_manager.get_stats()
        assert stats['check_ins'] == 0
        assert stats['sos_dispatches'] == 0
        assert stats['database_size_bytes'] > 0

    def test_bad_query_raises_database_error(self, db_manager):
        with pytest.raises(DatabaseError):
            db_manager.execute_query("SELECT * FROM no_such_table")

    def test_global_instance(self, temp_dir):
        manager = initialize_database(str(temp_dir / "global.db"))
        assert get_database() is manager
        manager.close()


class TestCheckInRows:
    """Test check-in persistence"""

    async def test_create_and_get(self, sqlite_gateway):
        created = await sqlite_gateway.create_check_in("user1", DUE, "c1", SAMPLE_LOCATION)

        loaded = sqlite_gateway.get_check_in("c1")
        assert created.id == "c1"
        assert loaded.user_id == "user1"
        assert loaded.scheduled_time == DUE
        assert loaded.status == CheckInStatus.PENDING
        assert loaded.location == SAMPLE_LOCATION

    async def test_conditional_status_update(self, sqlite_gateway):
        await sqlite_gateway.create_check_in("user1", DUE, "c1")

        assert await sqlite_gateway.update_check_in_status("c1", CheckInStatus.OVERDUE, expected=CheckInStatus.PENDING)
        assert not await sqlite_gateway.update_check_in_status(
            "c1", CheckInStatus.COMPLETED, expected=CheckInStatus.PENDING
        )
        assert sqlite_gateway.get_check_in("c1").status == CheckInStatus.OVERDUE

    async def test_completed_at_round_trips(self, sqlite_gateway):
        await sqlite_gateway.create_check_in("user1", DUE, "c1")
        done = DUE - timedelta(minutes=5)

        await sqlite_gateway.update_check_in_status("c1", CheckInStatus.COMPLETED, completed_at=done)
        assert sqlite_gateway.get_check_in("c1").completed_at == done

    async def test_conditional_delete(self, sqlite_gateway):
        await sqlite_gateway.create_check_in("user1", DUE, "c1")
        await sqlite_gateway.update_check_in_status("c1", CheckInStatus.OVERDUE)

        assert not await sqlite_gateway.delete_check_in("c1", expected=CheckInStatus.PENDING)
        assert sqlite_gateway.get_check_in("c1") is not None
        assert await sqlite_gateway.delete_check_in("c1")
        assert sqlite_gateway.get_check_in("c1") is None

    async def test_list_pending(self, sqlite_gateway):
        await sqlite_gateway.create_check_in("user1", DUE + timedelta(hours=1), "late")
        await sqlite_gateway.create_check_in("user2", DUE, "early")
        await sqlite_gateway.create_check_in("user3", DUE, "done")
        await sqlite_gateway.update_check_in_status("done", CheckInStatus.COMPLETED)

        assert [c.id for c in sqlite_gateway.list_pending()] == ["early", "late"]
        assert [c.id for c in sqlite_gateway.list_pending("user1")] == ["late"]

    async def test_duplicate_id_fails_after_retries(self, sqlite_gateway):
        await sqlite_gateway.create_check_in("user1", DUE, "c1")

        with pytest.raises(PersistenceFailureError) as exc_info:
            await sqlite_gateway.create_check_in("user1", DUE, "c1")

        assert exc_info.value.operation == "create_check_in"
        assert isinstance(exc_info.value.cause, DatabaseError)

    async def test_transient_write_error_is_retried(self, sqlite_gateway, db_manager):
        real_update = db_manager.execute_update
        calls = []

        def flaky_update(query, params=()):
            calls.append(query)
            if len(calls) == 1:
                raise DatabaseError("database is locked")
            return real_update(query, params)

        with patch.object(db_manager, 'execute_update', side_effect=flaky_update):
            await sqlite_gateway.create_check_in("user1", DUE, "c1")

        assert len(calls) == 2
        assert sqlite_gateway.get_check_in("c1") is not None

    async def test_retry_wait_lets_other_tasks_run(self, db_manager):
        gateway = SQLitePersistenceGateway(db_manager, max_retries=3, retry_delay=0.02)
        ticks = []
        stop = asyncio.Event()

        async def ticker():
            while not stop.is_set():
                ticks.append(1)
                await asyncio.sleep(0.001)

        ticker_task = asyncio.create_task(ticker())
        await asyncio.sleep(0)
        try:
            with patch.object(db_manager, 'execute_update', side_effect=DatabaseError("database is locked")):
                with pytest.raises(PersistenceFailureError):
                    await gateway.create_check_in("user1", DUE, "c1")
            ticks_during_write = len(ticks)
        finally:
            stop.set()
            await ticker_task

        assert ticks_during_write > 3

    def test_read_errors_degrade(self, sqlite_gateway, db_manager):
        with patch.object(db_manager, 'execute_query', side_effect=DatabaseError("disk I/O error")):
            assert sqlite_gateway.list_pending() == []
            assert sqlite_gateway.get_check_in("c1") is None
            assert sqlite_gateway.list_active_alerts() == []


class TestAlertRows:
    """Test alert, contact and dispatch persistence"""

    def make_alert(self, **kwargs):
        defaults = dict(
            user_id="user1",
            alert_type=TriggerSource.VOICE,
            user_name="Jane",
            location=SAMPLE_LOCATION,
            battery_level=80,
            network_type="cellular",
            is_connected=True,
            triggered_at=DUE
        )
        defaults.update(kwargs)
        return SOSAlert(**defaults)

    async def test_create_and_get_alert(self, sqlite_gateway):
        alert = await sqlite_gateway.create_alert(self.make_alert())

        loaded = sqlite_gateway.get_alert(alert.id)
        assert loaded.alert_type == TriggerSource.VOICE
        assert loaded.status == AlertStatus.ACTIVE
        assert loaded.user_name == "Jane"
        assert loaded.location == SAMPLE_LOCATION
        assert loaded.is_connected is True
        assert loaded.triggered_at == DUE

    async def test_resolve_alert(self, sqlite_gateway):
        alert = await sqlite_gateway.create_alert(self.make_alert())

        assert await sqlite_gateway.update_alert_status(alert.id, AlertStatus.RESOLVED, DUE)
        loaded = sqlite_gateway.get_alert(alert.id)
        assert loaded.status == AlertStatus.RESOLVED
        assert loaded.resolved_at == DUE
        assert sqlite_gateway.list_active_alerts() == []

    async def test_update_unknown_alert(self, sqlite_gateway):
        assert not await sqlite_gateway.update_alert_status("missing", AlertStatus.RESOLVED)

    async def test_list_active_alerts_by_user(self, sqlite_gateway):
        await sqlite_gateway.create_alert(self.make_alert())
        other = await sqlite_gateway.create_alert(self.make_alert(user_id="user2", location=None))

        assert len(sqlite_gateway.list_active_alerts()) == 2
        active = sqlite_gateway.list_active_alerts("user2")
        assert [a.id for a in active] == [other.id]
        assert active[0].location is None

    async def test_emergency_contacts(self, sqlite_gateway):
        await sqlite_gateway.save_emergency_contact(
            EmergencyContact(id="k1", name="Kim", user_id="user1", email="kim@example.com")
        )
        await sqlite_gateway.save_emergency_contact(
            EmergencyContact(id="k2", name="Lee", user_id="user1", whatsapp="+15550100000")
        )

        contacts = sqlite_gateway.get_emergency_contacts("user1")
        assert {c.id for c in contacts} == {"k1", "k2"}
        assert sqlite_gateway.get_emergency_contacts("user2") == []

    async def test_dispatch_history(self, sqlite_gateway):
        alert = await sqlite_gateway.create_alert(self.make_alert())
        for sequence in (1, 0):
            await sqlite_gateway.record_dispatch(DispatchRecord(
                alert_id=alert.id,
                user_id="user1",
                sequence=sequence,
                location=SAMPLE_LOCATION,
                contacts_notified=2,
                contacts_failed=1,
                sent_at=DUE
            ))

        history = sqlite_gateway.list_dispatches(alert.id)
        assert [d.sequence for d in history] == [0, 1]
        assert history[0].contacts_failed == 1
        assert history[0].location == SAMPLE_LOCATION
