"""Per-device transient runtime state.

The registry replaces process-wide lookup tables: it is owned by the
service and injected into the gateway, the geofence evaluator and the
inactivity scheduler, so tests can build isolated instances. Entries are
created on first use and never persisted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class GeofenceEvent(StrEnum):
    ENTER = "enter"
    EXIT = "exit"


@dataclass
class GeofenceRuntimeState:
    """Geofence state machine memory. ``inside is None`` means Unknown."""

    inside: bool | None = None
    last_alert_at: datetime | None = None
    last_event: GeofenceEvent | None = None
    outside_since: datetime | None = None
    inside_since: datetime | None = None


@dataclass
class InactivityRuntimeState:
    inactive: bool = False
    last_inactive_alert_at: datetime | None = None
    last_active_alert_at: datetime | None = None
    timer: asyncio.TimerHandle | None = None
    # Bumped on every reschedule; a firing timer whose generation is not
    # current has been superseded and must do nothing.
    generation: int = 0


@dataclass
class DeviceRuntime:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    geofence: GeofenceRuntimeState | None = None
    inactivity: InactivityRuntimeState = field(default_factory=InactivityRuntimeState)


class DeviceRuntimeRegistry:
    """Keyed per-device runtime state with create-on-first-use semantics."""

    def __init__(self) -> None:
        self._devices: dict[str, DeviceRuntime] = {}

    def runtime(self, device_key: str) -> DeviceRuntime:
        entry = self._devices.get(device_key)
        if entry is None:
            entry = DeviceRuntime()
            self._devices[device_key] = entry
        return entry

    def get(self, device_key: str) -> DeviceRuntime | None:
        return self._devices.get(device_key)

    def lock(self, device_key: str) -> asyncio.Lock:
        """Serialization lock for all per-device processing."""
        return self.runtime(device_key).lock

    def geofence(self, device_key: str) -> GeofenceRuntimeState:
        entry = self.runtime(device_key)
        if entry.geofence is None:
            entry.geofence = GeofenceRuntimeState()
        return entry.geofence

    def peek_geofence(self, device_key: str) -> GeofenceRuntimeState | None:
        entry = self._devices.get(device_key)
        return entry.geofence if entry is not None else None

    def inactivity(self, device_key: str) -> InactivityRuntimeState:
        return self.runtime(device_key).inactivity

    def keys(self) -> list[str]:
        return list(self._devices)

    def __contains__(self, device_key: object) -> bool:
        return device_key in self._devices

    def __len__(self) -> int:
        return len(self._devices)
