"""Persistence interface for devices and location history.

The realtime core only needs a handful of operations; they are described
by the :class:`DeviceRepository` protocol so production stores and test
doubles are interchangeable. :class:`InMemoryRepository` is the bundled
implementation.

No cross-collection transactionality is assumed: a device update and a
history append for the same sample happen independently.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol

from pydantic import ValidationError

from pygeotrack.exceptions import PersistenceError
from pygeotrack.models.device import DeviceRecord
from pygeotrack.models.location import LocationRecord

_logger = logging.getLogger(__name__)


class DeviceRepository(Protocol):
    """Structural persistence interface used by the core.

    Implementations raise :class:`~pygeotrack.exceptions.PersistenceError`
    for storage failures.
    """

    async def find_device(self, device_key: str) -> DeviceRecord | None: ...

    async def update_device(self, device_key: str, patch: Mapping[str, Any]) -> DeviceRecord | None: ...

    async def list_devices(self) -> list[DeviceRecord]: ...

    async def append_location(self, record: LocationRecord) -> LocationRecord: ...

    async def find_last_location_timestamp(self, device_key: str) -> datetime | None: ...

    async def list_locations(self, device_key: str, *, since: datetime | None = None) -> list[LocationRecord]: ...


class InMemoryRepository:
    """Process-local store.

    History is kept per device in insertion order, which is also timestamp
    order as long as every append goes through the history writer.
    """

    def __init__(self, devices: Iterable[DeviceRecord] = ()) -> None:
        self._devices: dict[str, DeviceRecord] = {}
        self._locations: dict[str, list[LocationRecord]] = {}
        for device in devices:
            self.add_device(device)

    def add_device(self, device: DeviceRecord) -> None:
        """Register a device (administrative creation is outside the core)."""
        self._devices[device.device_key] = device

    async def find_device(self, device_key: str) -> DeviceRecord | None:
        return self._devices.get(device_key)

    async def update_device(self, device_key: str, patch: Mapping[str, Any]) -> DeviceRecord | None:
        current = self._devices.get(device_key)
        if current is None:
            return None
        data = current.model_dump()
        data.update(copy.deepcopy(dict(patch)))
        try:
            updated = DeviceRecord.model_validate(data)
        except ValidationError as exc:
            raise PersistenceError(f"Invalid update for device {device_key}: {exc}") from exc
        self._devices[device_key] = updated
        return updated

    async def list_devices(self) -> list[DeviceRecord]:
        return list(self._devices.values())

    async def append_location(self, record: LocationRecord) -> LocationRecord:
        self._locations.setdefault(record.device_key, []).append(record)
        _logger.debug("Stored location id=%s device=%s ts=%s", record.id, record.device_key, record.timestamp)
        return record

    async def find_last_location_timestamp(self, device_key: str) -> datetime | None:
        records = self._locations.get(device_key)
        if not records:
            return None
        return max(record.timestamp for record in records)

    async def list_locations(self, device_key: str, *, since: datetime | None = None) -> list[LocationRecord]:
        records = self._locations.get(device_key, [])
        if since is None:
            return list(records)
        return [record for record in records if record.timestamp >= since]
