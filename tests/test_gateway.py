from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from conftest import INSIDE, OUTSIDE, SQUARE_RING, FailingHistoryRepository, FakeNotifier, ManualClock, make_device

from pygeotrack._tasks import BackgroundTasks
from pygeotrack.alerts import AlertDispatcher
from pygeotrack.geofence import GeofenceEvaluator
from pygeotrack.history import LocationHistoryWriter
from pygeotrack.inactivity import InactivityScheduler
from pygeotrack.ingestion.gateway import IngestionGateway
from pygeotrack.realtime import RealtimeBroadcaster, Subscription
from pygeotrack.repository import InMemoryRepository
from pygeotrack.state.runtime import DeviceRuntimeRegistry
from pygeotrack.state.store import DeviceStateStore

_DWELL = 30


class _Harness:
    def __init__(self, repository: InMemoryRepository, clock: ManualClock, notifier: FakeNotifier) -> None:
        self.repository = repository
        self.clock = clock
        self.notifier = notifier
        self.registry = DeviceRuntimeRegistry()
        self.tasks = BackgroundTasks()
        self.broadcaster = RealtimeBroadcaster()
        self.events: Subscription = self.broadcaster.subscribe()
        self.geofence = GeofenceEvaluator(
            self.registry,
            exit_dwell=timedelta(seconds=_DWELL),
            cooldown=timedelta(minutes=10),
            clock=clock,
        )
        self.inactivity = InactivityScheduler(
            self.registry,
            timeout=timedelta(minutes=5),
            alert_cooldown=timedelta(minutes=10),
            clock=clock,
        )
        self.gateway = IngestionGateway(
            registry=self.registry,
            store=DeviceStateStore(repository, inactivity_timeout=timedelta(minutes=5), clock=clock),
            broadcaster=self.broadcaster,
            history=LocationHistoryWriter(repository, clock=clock),
            geofence=self.geofence,
            inactivity=self.inactivity,
            alerts=AlertDispatcher(notifier, "chat-1", tasks=self.tasks, timeout=1.0, clock=clock),
            clock=clock,
        )

    async def send(self, point: tuple[float, float], key: str = "dev-1") -> None:
        await self.gateway.ingest(key, {"latitude": point[0], "longitude": point[1]})

    async def settle(self) -> None:
        await self.tasks.drain(timeout=1.0)

    def event_names(self) -> list[str]:
        names = []
        while self.events.pending():
            names.append(self.events.get_nowait().name)
        return names

    def close(self) -> None:
        self.inactivity.shutdown()
        self.events.close()


@pytest.fixture
def harness(clock: ManualClock, notifier: FakeNotifier) -> _Harness:
    repository = InMemoryRepository(
        [
            make_device("dev-1", geofence=[SQUARE_RING]),
            make_device("plain"),
        ]
    )
    return _Harness(repository, clock, notifier)


@pytest.mark.asyncio
async def test_sample_updates_state_history_and_broadcasts(harness: _Harness) -> None:
    await harness.gateway.ingest("dev-1", b'{"latitude": 0.005, "longitude": 0.005, "speed": 12}')

    device = await harness.repository.find_device("dev-1")
    assert device is not None and device.is_active is True
    assert device.current_location is not None and device.current_location.speed == 12.0
    assert len(await harness.repository.list_locations("dev-1")) == 1

    event = harness.events.get_nowait()
    assert event.name == "locationUpdate"
    assert event.payload["deviceId"] == "dev-1"
    assert event.payload["location"]["location"] == {"type": "Point", "coordinates": [0.005, 0.005]}
    assert event.payload["location"]["speed"] == 12.0
    assert harness.inactivity.has_pending_timer("dev-1")
    harness.close()


@pytest.mark.asyncio
async def test_device_without_geofence_never_alerts(harness: _Harness) -> None:
    await harness.send((10.0, 10.0), key="plain")
    harness.clock.advance(60)
    await harness.send((10.1, 10.1), key="plain")
    await harness.settle()

    assert harness.notifier.messages == []
    assert harness.geofence.state("plain") is None
    assert harness.event_names() == ["locationUpdate", "locationUpdate"]
    harness.close()


@pytest.mark.asyncio
async def test_exit_after_dwell_then_immediate_enter(harness: _Harness) -> None:
    await harness.send(INSIDE)
    harness.clock.advance(5)
    await harness.send(OUTSIDE)
    await harness.settle()
    assert harness.notifier.messages == []

    harness.clock.advance(_DWELL + 1)
    await harness.send(OUTSIDE)
    await harness.settle()
    assert len(harness.notifier.messages) == 1
    assert "Event: Exit geofence" in harness.notifier.messages[0][1]

    harness.clock.advance(1)
    await harness.send(INSIDE)
    await harness.settle()
    assert len(harness.notifier.messages) == 2
    assert "Event: Enter geofence" in harness.notifier.messages[1][1]
    harness.close()


@pytest.mark.asyncio
async def test_malformed_and_unknown_samples_are_dropped(harness: _Harness) -> None:
    await harness.gateway.ingest("dev-1", b"{not json")
    await harness.gateway.ingest("dev-1", b'{"latitude": 123, "longitude": 0}')
    await harness.gateway.ingest("", b'{"latitude": 1, "longitude": 0}')
    await harness.gateway.ingest("ghost", b'{"latitude": 1, "longitude": 0}')

    assert harness.event_names() == []
    assert await harness.repository.list_locations("dev-1") == []
    assert await harness.repository.list_locations("ghost") == []
    assert not harness.inactivity.has_pending_timer("ghost")
    harness.close()


@pytest.mark.asyncio
async def test_history_failure_does_not_stop_pipeline(clock: ManualClock, notifier: FakeNotifier) -> None:
    repository = FailingHistoryRepository([make_device("dev-1", geofence=[SQUARE_RING])])
    harness = _Harness(repository, clock, notifier)

    await harness.send(OUTSIDE)
    clock.advance(1)
    await harness.send(INSIDE)
    await harness.settle()

    device = await repository.find_device("dev-1")
    assert device is not None and device.current_location is not None
    assert device.current_location.latitude == INSIDE[0]
    assert harness.event_names() == ["locationUpdate", "locationUpdate"]
    assert len(notifier.messages) == 1
    assert harness.inactivity.has_pending_timer("dev-1")
    harness.close()


@pytest.mark.asyncio
async def test_alert_failure_does_not_affect_ingestion(clock: ManualClock, failing_notifier: FakeNotifier) -> None:
    repository = InMemoryRepository([make_device("dev-1", geofence=[SQUARE_RING])])
    harness = _Harness(repository, clock, failing_notifier)

    await harness.send(OUTSIDE)
    clock.advance(1)
    await harness.send(INSIDE)
    await harness.settle()

    assert len(await repository.list_locations("dev-1")) == 2
    assert len(harness.tasks) == 0
    harness.close()


@pytest.mark.asyncio
async def test_concurrent_samples_for_one_device_keep_arrival_order(harness: _Harness) -> None:
    base = harness.clock()
    payloads = [
        {"latitude": 1.0 + n / 100, "longitude": 1.0, "timestamp": (base - timedelta(seconds=100 - n)).isoformat()}
        for n in range(10)
    ]

    await asyncio.gather(*(harness.gateway.ingest("plain", p) for p in payloads))

    records = await harness.repository.list_locations("plain")
    assert [r.latitude for r in records] == [p["latitude"] for p in payloads]
    assert all(a.timestamp <= b.timestamp for a, b in zip(records, records[1:]))
    harness.close()


@pytest.mark.asyncio
async def test_heartbeat_marks_seen_and_broadcasts(harness: _Harness) -> None:
    await harness.gateway.heartbeat("plain")
    await harness.gateway.heartbeat("ghost")

    device = await harness.repository.find_device("plain")
    assert device is not None
    assert device.last_seen == harness.clock()
    assert device.current_location is None

    event = harness.events.get_nowait()
    assert event.name == "deviceHeartbeat"
    assert event.payload == {"deviceId": "plain", "lastSeen": harness.clock().isoformat()}
    assert harness.events.pending() == 0
    assert harness.inactivity.has_pending_timer("plain")
    assert not harness.inactivity.has_pending_timer("ghost")
    harness.close()
