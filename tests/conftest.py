"""
Global pytest configuration and fixtures for SafeWatch testing.
"""
import logging
import sys
import tempfile
from pathlib import Path

import pytest

# Make the src layout and the tests package importable without installation
ROOT_DIR = Path(__file__).parent.parent
for path in (ROOT_DIR / "src", ROOT_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from safewatch.core.clock import ManualClock
from safewatch.core.database import DatabaseManager
from safewatch.core.logging import AUDIT_LOGGER
from safewatch.core.state import SafetyStateStore
from safewatch.models.safety import ChannelType
from safewatch.services.emergency.context import (
    ContextSnapshotter, StaticDeviceContext, StaticLocationProvider
)
from safewatch.services.emergency.coordinator import (
    EmergencyEscalationCoordinator, EscalationSettings
)
from safewatch.services.emergency.persistence import SQLitePersistenceGateway
from safewatch.services.notifications.fanout import NotificationFanout, RetryPolicy
from tests.mocks.safety_mocks import (
    InMemoryGateway, MockChannel, MockRecorder, SAMPLE_LOCATION
)


async def _no_sleep(seconds: float):
    return None


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def state():
    return SafetyStateStore()


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def db_manager(temp_dir):
    """SQLite database with all migrations applied."""
    manager = DatabaseManager(str(temp_dir / "safewatch_test.db"), max_connections=2)
    yield manager
    manager.close()


@pytest.fixture
def sqlite_gateway(db_manager):
    return SQLitePersistenceGateway(db_manager, max_retries=2, retry_delay=0)


@pytest.fixture
def email_channel():
    return MockChannel(ChannelType.EMAIL)


@pytest.fixture
def whatsapp_channel():
    return MockChannel(ChannelType.WHATSAPP)


@pytest.fixture
def fanout(email_channel, whatsapp_channel):
    """Fan-out over mock channels with immediate retries."""
    policy = RetryPolicy(max_retries=2, initial_backoff=0, max_backoff=0, attempt_timeout=1.0)
    return NotificationFanout([whatsapp_channel, email_channel], policy=policy, sleep=_no_sleep)


@pytest.fixture
def recorder():
    return MockRecorder()


@pytest.fixture
def snapshotter(clock):
    return ContextSnapshotter(
        location_provider=StaticLocationProvider(SAMPLE_LOCATION),
        device_context=StaticDeviceContext(battery_level=76, network_type="wifi", is_connected=True),
        timeout=1.0,
        clock=clock
    )


@pytest.fixture
def reported_errors():
    return []


@pytest.fixture
def coordinator(clock, state, gateway, fanout, snapshotter, recorder, reported_errors):
    settings = EscalationSettings(
        capture_interval_seconds=60,
        max_capture_minutes=30,
        max_capture_cycles=5,
        notify_on_trigger=True
    )
    coordinator = EmergencyEscalationCoordinator(
        clock=clock,
        state=state,
        gateway=gateway,
        fanout=fanout,
        snapshotter=snapshotter,
        recorder=recorder,
        settings=settings,
        error_callback=lambda user_id, error: reported_errors.append((user_id, error))
    )
    yield coordinator


@pytest.fixture
def isolated_logging():
    """Restore root and audit logger handlers replaced by initialize_logging()."""
    root = logging.getLogger()
    audit = logging.getLogger(AUDIT_LOGGER)
    saved_root, saved_level = list(root.handlers), root.level
    saved_audit = list(audit.handlers)
    yield
    for logger, saved in ((root, saved_root), (audit, saved_audit)):
        for handler in list(logger.handlers):
            if handler not in saved:
                logger.removeHandler(handler)
                handler.close()
        for handler in saved:
            if handler not in logger.handlers:
                logger.addHandler(handler)
    root.setLevel(saved_level)
