from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from conftest import SQUARE_RING, FakeNotifier, make_device

from pygeotrack import InMemoryRepository, TrackerConfig, TrackerService
from pygeotrack._mqtt import TelemetryMessage
from pygeotrack.exceptions import TrackerError
from pygeotrack.models.location import CurrentLocation, LocationRecord
from pygeotrack.service import load_devices

_TIMEOUT = 0.2


def _config(**overrides: object) -> TrackerConfig:
    values: dict[str, object] = {
        "inactivity_timeout": _TIMEOUT,
        "geocode_enabled": False,
        "telegram_chat_id": "chat-1",
    }
    values.update(overrides)
    return TrackerConfig(**values)  # type: ignore[arg-type]


def _texts(notifier: FakeNotifier) -> list[str]:
    return [text.splitlines()[0] for _chat, text in notifier.messages]


class _SlowHistoryRepository(InMemoryRepository):
    async def append_location(self, record: LocationRecord) -> LocationRecord:
        await asyncio.sleep(0.15)
        return await super().append_location(record)


@pytest.mark.asyncio
async def test_sample_just_before_timeout_keeps_device_active(notifier: FakeNotifier) -> None:
    repository = InMemoryRepository([make_device()])

    async with TrackerService(_config(), repository, notifier=notifier) as service:
        await service.ingest("dev-1", {"latitude": 1, "longitude": 1})
        for _ in range(3):
            await asyncio.sleep(_TIMEOUT * 0.6)
            await service.ingest("dev-1", {"latitude": 1, "longitude": 1})

        device = await service.get_device("dev-1")
        assert device is not None and device.is_active is True

    assert notifier.messages == []


@pytest.mark.asyncio
async def test_silence_then_return_sends_one_alert_each(notifier: FakeNotifier) -> None:
    repository = InMemoryRepository([make_device()])

    async with TrackerService(_config(), repository, notifier=notifier) as service:
        with service.broadcaster.subscribe() as events:
            await service.ingest("dev-1", {"latitude": 1, "longitude": 1})
            await asyncio.sleep(_TIMEOUT * 2)
            await asyncio.sleep(0.05)

            assert _texts(notifier) == ["⚠️ Device Inactive"]
            device = await service.get_device("dev-1")
            assert device is not None and device.is_active is False
            names = []
            while events.pending():
                names.append(events.get_nowait().name)
            assert names == ["locationUpdate", "deviceInactive"]

            await service.ingest("dev-1", {"latitude": 1, "longitude": 1})
            await asyncio.sleep(0.05)

            assert _texts(notifier) == ["⚠️ Device Inactive", "✅ Device Active"]
            device = await service.get_device("dev-1")
            assert device is not None and device.is_active is True


@pytest.mark.asyncio
async def test_startup_bootstraps_timers_from_last_seen(notifier: FakeNotifier) -> None:
    repository = InMemoryRepository([make_device("a"), make_device("b")])

    async with TrackerService(_config(), repository, notifier=notifier):
        await asyncio.sleep(_TIMEOUT * 2)

    assert _texts(notifier) == ["⚠️ Device Inactive", "⚠️ Device Inactive"]


@pytest.mark.asyncio
async def test_geofence_alert_end_to_end(notifier: FakeNotifier) -> None:
    repository = InMemoryRepository([make_device(geofence={"type": "Polygon", "coordinates": [SQUARE_RING]})])

    async with TrackerService(_config(inactivity_timeout=300), repository, notifier=notifier) as service:
        await service.ingest("dev-1", {"latitude": 0.02, "longitude": 0.02})
        await service.ingest("dev-1", {"latitude": 0.005, "longitude": 0.005})
        await asyncio.sleep(0.05)

    assert _texts(notifier) == ["🚨 Geofence Alert"]


@pytest.mark.asyncio
async def test_mqtt_messages_are_routed(notifier: FakeNotifier) -> None:
    repository = InMemoryRepository([make_device()])

    async with TrackerService(_config(inactivity_timeout=300), repository, notifier=notifier) as service:
        service._on_mqtt_message(  # noqa: SLF001
            TelemetryMessage("dev-1", "location", "gpstracker/device/dev-1/location", b'{"latitude": 1, "longitude": 2}')
        )
        service._on_mqtt_message(  # noqa: SLF001
            TelemetryMessage("dev-1", "heartbeat", "gpstracker/device/dev-1/heartbeat", b"")
        )
        await asyncio.sleep(0.05)

        assert len(await repository.list_locations("dev-1")) == 1
        device = await service.get_device("dev-1")
        assert device is not None and device.last_seen is not None


@pytest.mark.asyncio
async def test_recent_visits(notifier: FakeNotifier) -> None:
    repository = InMemoryRepository([make_device()])

    async with TrackerService(_config(inactivity_timeout=300), repository, notifier=notifier) as service:
        for _ in range(3):
            await service.ingest("dev-1", {"latitude": 45.0, "longitude": 7.0})
        await service.ingest("dev-1", {"latitude": 45.1, "longitude": 7.0})

        visits = await service.recent_visits("dev-1")

    assert [v.count for v in visits] == [3, 1]
    assert visits[0].center_lat == pytest.approx(45.0)


@pytest.mark.asyncio
async def test_commands_require_mqtt(notifier: FakeNotifier) -> None:
    async with TrackerService(_config(), InMemoryRepository(), notifier=notifier) as service:
        assert service.mqtt_running is False
        with pytest.raises(TrackerError):
            service.send_command("dev-1", {"action": "locate"})


@pytest.mark.asyncio
async def test_ingest_requires_started_service() -> None:
    service = TrackerService(_config(), InMemoryRepository())
    with pytest.raises(TrackerError):
        await service.ingest("dev-1", {"latitude": 1, "longitude": 1})


def test_load_devices(tmp_path: Path) -> None:
    path = tmp_path / "devices.json"
    path.write_text(json.dumps([{"deviceKey": "a", "name": "Van", "geofence": [SQUARE_RING]}, {"device_key": "b"}]))

    devices = load_devices(str(path))

    assert [d.device_key for d in devices] == ["a", "b"]
    assert devices[0].geofence.configured is True

    path.write_text(json.dumps({"deviceKey": "a"}))
    with pytest.raises(TrackerError):
        load_devices(str(path))


def test_load_devices_treats_naive_last_seen_as_utc(tmp_path: Path) -> None:
    path = tmp_path / "devices.json"
    path.write_text(json.dumps([{"deviceKey": "a", "lastSeen": "2026-01-01T00:00:00"}]))

    devices = load_devices(str(path))

    assert devices[0].last_seen == datetime(2026, 1, 1, tzinfo=UTC)
    assert devices[0].last_seen.tzinfo is UTC


@pytest.mark.asyncio
async def test_startup_with_naive_last_seen(tmp_path: Path, notifier: FakeNotifier) -> None:
    path = tmp_path / "devices.json"
    path.write_text(json.dumps([{"deviceKey": "a", "lastSeen": datetime.now(UTC).replace(tzinfo=None).isoformat()}]))
    repository = InMemoryRepository(load_devices(str(path)))

    async with TrackerService(_config(inactivity_timeout=300), repository, notifier=notifier) as service:
        assert service._scheduler.has_pending_timer("a")  # noqa: SLF001


@pytest.mark.asyncio
async def test_slow_history_append_does_not_trip_inactivity(notifier: FakeNotifier) -> None:
    repository = _SlowHistoryRepository([make_device()])

    async with TrackerService(_config(), repository, notifier=notifier) as service:
        with service.broadcaster.subscribe() as events:
            await asyncio.sleep(_TIMEOUT / 2)
            await service.ingest("dev-1", {"latitude": 1, "longitude": 1})

            names = []
            while events.pending():
                names.append(events.get_nowait().name)
            assert names == ["locationUpdate"]
            assert notifier.messages == []
            device = await service.get_device("dev-1")
            assert device is not None and device.is_active is True


@pytest.mark.asyncio
async def test_shutdown_drains_ingests_without_rearming_timers(notifier: FakeNotifier) -> None:
    repository = InMemoryRepository([make_device()])

    async with TrackerService(_config(), repository, notifier=notifier) as service:
        service._on_mqtt_message(  # noqa: SLF001
            TelemetryMessage("dev-1", "location", "gpstracker/device/dev-1/location", b'{"latitude": 1, "longitude": 2}')
        )

    assert len(await repository.list_locations("dev-1")) == 1
    assert not service._scheduler.has_pending_timer("dev-1")  # noqa: SLF001
    await asyncio.sleep(_TIMEOUT * 1.5)
    assert not service._scheduler.is_inactive("dev-1")  # noqa: SLF001
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_bootstrap_falls_back_to_current_location_time(notifier: FakeNotifier) -> None:
    an_hour_ago = datetime.now(UTC) - timedelta(hours=1)
    repository = InMemoryRepository(
        [make_device(current_location=CurrentLocation(latitude=1.0, longitude=1.0, timestamp=an_hour_ago))]
    )

    async with TrackerService(_config(inactivity_timeout=300), repository, notifier=notifier):
        await asyncio.sleep(0.05)

    assert _texts(notifier) == ["⚠️ Device Inactive"]
