from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pygeotrack.realtime import RealtimeBroadcaster


@pytest.mark.asyncio
async def test_subscribers_receive_events_in_order() -> None:
    broadcaster = RealtimeBroadcaster()
    with broadcaster.subscribe() as first, broadcaster.subscribe() as second:
        broadcaster.publish("locationUpdate", {"n": 1})
        broadcaster.publish("deviceHeartbeat", {"n": 2})

        for subscription in (first, second):
            assert subscription.pending() == 2
            event = await subscription.get()
            assert (event.name, event.payload) == ("locationUpdate", {"n": 1})
            assert subscription.get_nowait().payload == {"n": 2}

    assert broadcaster.subscriber_count == 0


@pytest.mark.asyncio
async def test_no_subscribers_is_a_noop() -> None:
    broadcaster = RealtimeBroadcaster()
    broadcaster.publish("locationUpdate", {"n": 1})

    with broadcaster.subscribe() as late:
        assert late.pending() == 0


@pytest.mark.asyncio
async def test_full_queue_drops_for_slow_subscriber_only() -> None:
    broadcaster = RealtimeBroadcaster(queue_size=2)
    slow = broadcaster.subscribe()
    fast = broadcaster.subscribe(maxsize=10)

    for n in range(5):
        broadcaster.publish("locationUpdate", {"n": n})

    assert slow.pending() == 2
    assert slow.dropped == 3
    assert fast.pending() == 5
    assert fast.dropped == 0
    slow.close()
    fast.close()


@pytest.mark.asyncio
async def test_async_iteration() -> None:
    broadcaster = RealtimeBroadcaster()
    received: list[int] = []

    async def _consume() -> None:
        with broadcaster.subscribe() as events:
            async for event in events:
                received.append(event.payload["n"])
                if len(received) == 3:
                    return

    consumer = asyncio.create_task(_consume())
    await asyncio.sleep(0)
    for n in range(3):
        broadcaster.publish("locationUpdate", {"n": n})
    await asyncio.wait_for(consumer, 1.0)

    assert received == [0, 1, 2]


def test_listener_errors_are_contained() -> None:
    broadcaster = RealtimeBroadcaster()
    seen: list[tuple[str, dict[str, Any]]] = []

    def _broken(name: str, payload: dict[str, Any]) -> None:
        raise RuntimeError("listener bug")

    broadcaster.add_listener(_broken)
    remove = broadcaster.add_listener(lambda name, payload: seen.append((name, payload)))

    broadcaster.publish("deviceInactive", {"deviceId": "dev-1"})
    remove()
    broadcaster.publish("deviceInactive", {"deviceId": "dev-2"})

    assert seen == [("deviceInactive", {"deviceId": "dev-1"})]
    assert broadcaster.subscriber_count == 1
