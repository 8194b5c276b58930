from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import ManualClock

from pygeotrack.history import LocationHistoryWriter
from pygeotrack.ingestion.gateway import parse_sample
from pygeotrack.repository import InMemoryRepository


def _payload(ts: datetime, lat: float = 1.0) -> dict[str, object]:
    return {"latitude": lat, "longitude": 2.0, "timestamp": ts.isoformat()}


@pytest.mark.asyncio
async def test_in_order_samples_keep_device_timestamps(clock: ManualClock) -> None:
    repository = InMemoryRepository()
    writer = LocationHistoryWriter(repository, clock=clock)
    t0 = clock() - timedelta(minutes=5)

    for offset in (0, 10, 20):
        sample = parse_sample("dev-1", _payload(t0 + timedelta(seconds=offset)), received_at=clock())
        await writer.append("dev-1", sample)

    stamps = [r.timestamp for r in await repository.list_locations("dev-1")]
    assert stamps == [t0, t0 + timedelta(seconds=10), t0 + timedelta(seconds=20)]


@pytest.mark.asyncio
async def test_out_of_order_sample_gets_server_time(clock: ManualClock) -> None:
    repository = InMemoryRepository()
    writer = LocationHistoryWriter(repository, clock=clock)
    first = clock() - timedelta(minutes=1)

    await writer.append("dev-1", parse_sample("dev-1", _payload(first), received_at=clock()))
    record = await writer.append(
        "dev-1", parse_sample("dev-1", _payload(first - timedelta(minutes=10), lat=5.0), received_at=clock())
    )

    assert record.timestamp == clock()
    assert record.latitude == 5.0


@pytest.mark.asyncio
async def test_future_stored_timestamp_is_reused() -> None:
    clock = ManualClock(datetime(2026, 1, 1, 12, 0, tzinfo=UTC))
    repository = InMemoryRepository()
    writer = LocationHistoryWriter(repository, clock=clock)
    future = clock() + timedelta(hours=1)

    await writer.append("dev-1", parse_sample("dev-1", _payload(future), received_at=clock()))
    record = await writer.append("dev-1", parse_sample("dev-1", _payload(clock()), received_at=clock()))

    assert record.timestamp == future


@pytest.mark.asyncio
async def test_sequence_never_decreases(clock: ManualClock) -> None:
    repository = InMemoryRepository()
    writer = LocationHistoryWriter(repository, clock=clock)
    base = clock()
    offsets = [0, -30, 15, 15, -600, 45, 5]

    for offset in offsets:
        clock.advance(1)
        await writer.append("dev-1", parse_sample("dev-1", _payload(base + timedelta(seconds=offset)), received_at=clock()))

    stamps = [r.timestamp for r in await repository.list_locations("dev-1")]
    assert len(stamps) == len(offsets)
    assert all(a <= b for a, b in zip(stamps, stamps[1:]))
