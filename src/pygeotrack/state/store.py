"""Device state store.

Holds the latest known location, telemetry and heartbeat time per device
on top of a :class:`~pygeotrack.repository.DeviceRepository`, and applies
the read-time stale rule to everything it hands out.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from pygeotrack.models._base import utcnow
from pygeotrack.models.device import DeviceRecord
from pygeotrack.models.location import CurrentLocation
from pygeotrack.models.telemetry import LocationSample
from pygeotrack.repository import DeviceRepository
from pygeotrack.state.policy import apply_stale_status

_logger = logging.getLogger(__name__)


class DeviceStateStore:
    """Authoritative current state per device.

    Writes go straight to the repository; reads return the stored record
    with ``is_active`` derived from ``last_seen`` and *inactivity_timeout*,
    so a delayed background timer never makes a stale device look active.
    """

    def __init__(
        self,
        repository: DeviceRepository,
        *,
        inactivity_timeout: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._timeout = inactivity_timeout
        self._clock = clock

    def _report(self, device: DeviceRecord | None) -> DeviceRecord | None:
        if device is None:
            return None
        return apply_stale_status(device, self._clock(), self._timeout)

    async def update_current(self, device_key: str, sample: LocationSample) -> DeviceRecord | None:
        """Record an accepted sample as the device's current location.

        Returns the updated record, or ``None`` when the device is unknown.
        """
        now = self._clock()
        updated = await self._repository.update_device(
            device_key,
            {
                "last_seen": now,
                "is_active": True,
                "current_location": CurrentLocation.from_sample(sample, at=now),
            },
        )
        if updated is None:
            _logger.debug("update_current: device not found key=%s", device_key)
        return self._report(updated)

    async def touch(self, device_key: str) -> DeviceRecord | None:
        """Heartbeat: mark seen and active without changing the location."""
        updated = await self._repository.update_device(
            device_key,
            {"last_seen": self._clock(), "is_active": True},
        )
        return self._report(updated)

    async def mark_inactive(self, device_key: str) -> DeviceRecord | None:
        updated = await self._repository.update_device(device_key, {"is_active": False})
        return self._report(updated)

    async def get(self, device_key: str) -> DeviceRecord | None:
        return self._report(await self._repository.find_device(device_key))

    async def list_devices(self) -> list[DeviceRecord]:
        now = self._clock()
        return [apply_stale_status(device, now, self._timeout) for device in await self._repository.list_devices()]
