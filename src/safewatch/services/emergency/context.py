"""
Device context collaborators

Location and device-state providers consulted when an alert opens and on
every notification cycle. All lookups are best effort: a missing value, a
refused permission or a slow provider never blocks an alert.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from safewatch.core.clock import Clock, SystemClock
from safewatch.core.errors import PermissionDeniedError
from safewatch.models.safety import AlertContext, LocationData


class LocationProvider(ABC):
    """Source of the user's current position"""

    @abstractmethod
    async def get_current_location(self) -> Optional[LocationData]:
        pass


class DeviceContext(ABC):
    """Source of battery and connectivity information"""

    @abstractmethod
    async def get_battery_level(self) -> Optional[int]:
        pass

    @abstractmethod
    async def get_network_info(self) -> Optional[Tuple[str, bool]]:
        """(network type, is connected) or None if unknown"""
        pass


class StaticLocationProvider(LocationProvider):
    """Returns a fixed, externally updated location"""

    def __init__(self, location: Optional[LocationData] = None):
        self.location = location

    def update(self, location: Optional[LocationData]):
        self.location = location

    async def get_current_location(self) -> Optional[LocationData]:
        return self.location


class StaticDeviceContext(DeviceContext):
    """Returns fixed, externally updated device readings"""

    def __init__(
        self,
        battery_level: Optional[int] = None,
        network_type: Optional[str] = None,
        is_connected: Optional[bool] = None
    ):
        self.battery_level = battery_level
        self.network_type = network_type
        self.is_connected = is_connected

    async def get_battery_level(self) -> Optional[int]:
        return self.battery_level

    async def get_network_info(self) -> Optional[Tuple[str, bool]]:
        if self.network_type is None and self.is_connected is None:
            return None
        return self.network_type or "unknown", bool(self.is_connected)


class ContextSnapshotter:
    """Collects an AlertContext from the providers within a time bound"""

    def __init__(
        self,
        location_provider: Optional[LocationProvider] = None,
        device_context: Optional[DeviceContext] = None,
        timeout: float = 10.0,
        clock: Optional[Clock] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.location_provider = location_provider
        self.device_context = device_context
        self.timeout = timeout
        self.clock = clock or SystemClock()

    async def snapshot(self) -> AlertContext:
        location, battery, network = await asyncio.gather(
            self._lookup("location", self.location_provider and self.location_provider.get_current_location),
            self._lookup("battery", self.device_context and self.device_context.get_battery_level),
            self._lookup("network", self.device_context and self.device_context.get_network_info)
        )

        network_type, is_connected = network if network else (None, None)
        return AlertContext(
            location=location,
            battery_level=battery,
            network_type=network_type,
            is_connected=is_connected,
            captured_at=self.clock.now()
        )

    async def _lookup(self, what: str, getter):
        if getter is None:
            return None

        try:
            return await asyncio.wait_for(getter(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"Timed out reading {what} after {self.timeout}s")
        except PermissionDeniedError as e:
            self.logger.warning(f"Cannot read {what}: {e}")
        except Exception as e:
            self.logger.error(f"Error reading {what}: {e}")
        return None
