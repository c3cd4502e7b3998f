"""
Base test classes for SafeWatch testing.
"""
import tempfile
from pathlib import Path
from typing import List
from unittest.mock import Mock, patch

from safewatch.core.clock import ManualClock
from safewatch.core.state import SafetyStateStore
from safewatch.models.safety import TriggerSource
from tests.mocks.safety_mocks import InMemoryGateway


class BaseTestCase:
    """Base class for all test cases."""

    def setup_method(self):
        """Set up test method."""
        self.temp_files = []
        self.mock_patches = []

    def teardown_method(self):
        """Clean up after test method."""
        for temp_file in self.temp_files:
            if temp_file.exists():
                temp_file.unlink()

        for patch_obj in self.mock_patches:
            patch_obj.stop()

    def create_temp_file(self, content: bytes = b"", suffix: str = ".tmp") -> Path:
        """Create a temporary file for testing."""
        handle = tempfile.NamedTemporaryFile(suffix=suffix, delete=False)
        handle.write(content)
        handle.close()
        temp_file = Path(handle.name)
        self.temp_files.append(temp_file)
        return temp_file

    def add_patch(self, target: str, **kwargs) -> Mock:
        """Add a mock patch that will be automatically cleaned up."""
        patch_obj = patch(target, **kwargs)
        mock_obj = patch_obj.start()
        self.mock_patches.append(patch_obj)
        return mock_obj


class SafetyTestCase(BaseTestCase):
    """Base class for tests driving the scheduler against a manual clock."""

    def setup_method(self):
        super().setup_method()
        self.clock = ManualClock()
        self.state = SafetyStateStore()
        self.gateway = InMemoryGateway()
        self.triggers: List[tuple] = []

    async def record_trigger(self, source: TriggerSource, user_id: str) -> str:
        """Stand-in for the coordinator's trigger entry point."""
        self.triggers.append((source, user_id))
        return f"alert-{len(self.triggers)}"
