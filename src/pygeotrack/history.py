"""Location history writer."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from pygeotrack.models._base import utcnow
from pygeotrack.models.location import LocationRecord
from pygeotrack.models.telemetry import LocationSample
from pygeotrack.repository import DeviceRepository

_logger = logging.getLogger(__name__)


class LocationHistoryWriter:
    """Append-only writer that keeps per-device history time-ordered.

    Devices can resend buffered samples or have skewed clocks. Before every
    insert the writer reads the newest stored timestamp for the device; an
    incoming timestamp that is not strictly newer is replaced by server
    time. When the stored timestamp is itself ahead of server time (device
    clock in the future) it is reused, so the sequence never goes backward.

    Callers must serialize appends per device; the gateway does so with the
    device lock.
    """

    def __init__(
        self,
        repository: DeviceRepository,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._clock = clock

    async def effective_timestamp(self, device_key: str, incoming: datetime) -> datetime:
        last = await self._repository.find_last_location_timestamp(device_key)
        if last is None or incoming > last:
            return incoming
        now = self._clock()
        _logger.debug(
            "Non-monotonic timestamp for device=%s incoming=%s last=%s; using server time",
            device_key,
            incoming.isoformat(),
            last.isoformat(),
        )
        return now if now >= last else last

    async def append(self, device_key: str, sample: LocationSample) -> LocationRecord:
        """Store *sample* for *device_key*.

        Raises
        ------
        PersistenceError
            When the repository fails; nothing else is rolled back.
        """
        timestamp = await self.effective_timestamp(device_key, sample.timestamp)
        record = LocationRecord(
            device_key=device_key,
            latitude=sample.latitude,
            longitude=sample.longitude,
            timestamp=timestamp,
            speed=sample.speed,
            accuracy=sample.accuracy,
            satellites=sample.satellites,
            battery=sample.battery,
            metadata=sample.metadata,
        )
        return await self._repository.append_location(record)
