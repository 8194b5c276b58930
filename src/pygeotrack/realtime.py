"""In-process realtime fan-out to live subscribers.

Delivery is at-most-once with no retained state: an event published while
nobody is subscribed is lost, and a subscriber whose queue is full misses
the event instead of slowing the publisher down.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

_logger = logging.getLogger(__name__)

EventCallback = Callable[[str, dict[str, Any]], None]


@dataclass(frozen=True)
class RealtimeEvent:
    name: str
    payload: dict[str, Any]


class Subscription:
    """A bounded queue of events for one subscriber.

    Use as an async iterator, and :meth:`close` (or ``with``) when done.
    """

    def __init__(self, broadcaster: RealtimeBroadcaster, maxsize: int) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[RealtimeEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, event: RealtimeEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    async def get(self) -> RealtimeEvent:
        return await self._queue.get()

    def get_nowait(self) -> RealtimeEvent:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._broadcaster._unsubscribe(self)  # noqa: SLF001

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    async def __aiter__(self) -> AsyncIterator[RealtimeEvent]:
        while True:
            yield await self._queue.get()


class RealtimeBroadcaster:
    """Publish normalized events to queue and callback subscribers."""

    def __init__(self, *, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscriptions: list[Subscription] = []
        self._callbacks: list[EventCallback] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions) + len(self._callbacks)

    def subscribe(self, *, maxsize: int | None = None) -> Subscription:
        subscription = Subscription(self, maxsize if maxsize is not None else self._queue_size)
        self._subscriptions.append(subscription)
        return subscription

    def add_listener(self, callback: EventCallback) -> Callable[[], None]:
        """Register a synchronous callback; returns a function that removes it."""
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        """Fan *payload* out to current subscribers; never raises."""
        if not self._subscriptions and not self._callbacks:
            _logger.debug("No realtime subscribers; dropping %s", event_name)
            return
        event = RealtimeEvent(name=event_name, payload=payload)
        for subscription in list(self._subscriptions):
            subscription._offer(event)  # noqa: SLF001
        for callback in list(self._callbacks):
            try:
                callback(event_name, payload)
            except Exception:
                _logger.exception("Realtime listener failed for %s", event_name)
