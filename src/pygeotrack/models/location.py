"""Location models: stored history records and the device's current fix."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import Field

from pygeotrack.models._base import TrackerBaseModel, UtcDatetime
from pygeotrack.models.telemetry import Battery, LocationSample


class CurrentLocation(TrackerBaseModel):
    """Latest known point and telemetry of a device."""

    latitude: float
    longitude: float
    timestamp: UtcDatetime
    speed: float | None = None
    accuracy: float | None = None
    satellites: int | None = None
    battery: Battery | None = None

    @classmethod
    def from_sample(cls, sample: LocationSample, *, at: datetime) -> CurrentLocation:
        return cls(
            latitude=sample.latitude,
            longitude=sample.longitude,
            timestamp=at,
            speed=sample.speed,
            accuracy=sample.accuracy,
            satellites=sample.satellites,
            battery=sample.battery,
        )


class LocationRecord(TrackerBaseModel):
    """Immutable location history record.

    For a given device, records are stored with non-decreasing ``timestamp``
    in insertion order (see :class:`pygeotrack.history.LocationHistoryWriter`).
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    device_key: str
    latitude: float
    longitude: float
    timestamp: UtcDatetime
    speed: float | None = None
    accuracy: float | None = None
    satellites: int | None = None
    battery: Battery | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
