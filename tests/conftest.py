from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from pygeotrack.exceptions import GeocodeError, NotificationError, PersistenceError
from pygeotrack.models.device import DeviceRecord, Geofence
from pygeotrack.models.location import LocationRecord
from pygeotrack.repository import InMemoryRepository

# Closed square of roughly 1.1 km around (lat 0.005, lng 0.005).
SQUARE_RING = [[0.0, 0.0], [0.01, 0.0], [0.01, 0.01], [0.0, 0.01], [0.0, 0.0]]
INSIDE = (0.005, 0.005)
OUTSIDE = (0.02, 0.02)


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeNotifier:
    def __init__(self, error: Exception | None = None) -> None:
        self.messages: list[tuple[str, str]] = []
        self.error = error

    async def send_message(self, chat_id: str, text: str) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        self.messages.append((chat_id, text))
        return {"message_id": len(self.messages)}


class FakeGeocoder:
    def __init__(self, address: str | None = "1 Main Street, Springfield, 12345, Country") -> None:
        self.address = address
        self.calls: list[tuple[float, float]] = []
        self.fail = False

    async def lookup(self, lat: float, lng: float) -> str | None:
        self.calls.append((lat, lng))
        if self.fail:
            raise GeocodeError("geocoder down")
        return self.address


class FailingHistoryRepository(InMemoryRepository):
    """Device writes succeed, history appends fail."""

    async def append_location(self, record: LocationRecord) -> LocationRecord:
        raise PersistenceError("history store unavailable")


def make_device(key: str = "dev-1", *, geofence: Any = None, **fields: Any) -> DeviceRecord:
    return DeviceRecord(device_key=key, name=fields.pop("name", f"Tracker {key}"), geofence=geofence, **fields)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def square_geofence() -> Geofence:
    return Geofence.model_validate({"type": "Polygon", "coordinates": [SQUARE_RING]})


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def failing_notifier() -> FakeNotifier:
    return FakeNotifier(error=NotificationError("HTTP 502", status_code=502))


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()
