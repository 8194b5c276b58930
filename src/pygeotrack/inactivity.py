"""Inactivity detection with one cancelable timer per device.

Timers are ``asyncio`` timer handles and every mutation happens on the
event loop thread inside a single synchronous method, so cancelling the
previous timer and installing the next one cannot interleave with another
transition of the same device. Each reschedule also bumps a generation
counter: a callback that was already queued when it got superseded sees a
stale generation and does nothing.

A timer that expires while the device's lock is held (a sample or
heartbeat is being processed) is re-armed instead of declaring the device
inactive. After :meth:`InactivityScheduler.shutdown` no timer is armed
again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from pygeotrack.models._base import utcnow
from pygeotrack.state.policy import cooldown_active
from pygeotrack.state.runtime import DeviceRuntimeRegistry, InactivityRuntimeState

_logger = logging.getLogger(__name__)

TransitionCallback = Callable[[str, datetime, bool], None]
"""``(device_key, at, send_alert)``; ``send_alert`` is ``False`` within cooldown."""


class InactivityScheduler:
    """Declare devices inactive after a silence window.

    Parameters
    ----------
    registry : DeviceRuntimeRegistry
        Owner of the per-device :class:`InactivityRuntimeState`.
    timeout : timedelta
        Silence window.
    alert_cooldown : timedelta
        Minimum spacing of "inactive" alerts, and independently of
        "active again" alerts, per device.
    on_inactive, on_active : callable, optional
        Synchronous transition hooks, called on the event loop. They must
        not block; slow work belongs in a background task.
    """

    def __init__(
        self,
        registry: DeviceRuntimeRegistry,
        *,
        timeout: timedelta,
        alert_cooldown: timedelta,
        on_inactive: TransitionCallback | None = None,
        on_active: TransitionCallback | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._timeout = timeout
        self._cooldown = alert_cooldown
        self._on_inactive = on_inactive
        self._on_active = on_active
        self._clock = clock
        self._closed = False

    @property
    def timeout(self) -> timedelta:
        return self._timeout

    @property
    def closed(self) -> bool:
        return self._closed

    def bump(self, device_key: str) -> bool:
        """Record activity and restart the device's timer.

        Returns ``True`` when the device was flagged inactive and has just
        become active again.
        """
        if self._closed:
            return False
        state = self._registry.inactivity(device_key)
        reactivated = False
        if state.inactive:
            now = self._clock()
            send_alert = not cooldown_active(state.last_active_alert_at, now, self._cooldown)
            if send_alert:
                state.last_active_alert_at = now
            state.inactive = False
            reactivated = True
            _logger.info("Device %s active again (alert=%s)", device_key, send_alert)
            self._emit(self._on_active, device_key, now, send_alert)
        self._schedule(device_key, state, self._timeout.total_seconds())
        return reactivated

    def bootstrap(self, devices: Iterable[tuple[str, datetime | None]]) -> int:
        """Rebuild timers at startup from each device's last-seen time.

        The remaining delay is ``max(0, timeout - (now - last_seen))``; a
        device without ``last_seen`` gets the full timeout. Reopens a
        scheduler that was shut down.
        """
        self._closed = False
        now = self._clock()
        timeout_s = self._timeout.total_seconds()
        count = 0
        for device_key, last_seen in devices:
            elapsed = (now - last_seen).total_seconds() if last_seen is not None else 0.0
            delay = max(0.0, timeout_s - elapsed)
            self._schedule(device_key, self._registry.inactivity(device_key), delay)
            count += 1
        _logger.info("Bootstrapped inactivity timers for %d devices", count)
        return count

    def cancel(self, device_key: str) -> None:
        entry = self._registry.get(device_key)
        if entry is None:
            return
        state = entry.inactivity
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        state.generation += 1

    def shutdown(self) -> None:
        """Cancel every pending timer and refuse to arm new ones."""
        self._closed = True
        for device_key in self._registry.keys():
            self.cancel(device_key)

    def is_inactive(self, device_key: str) -> bool:
        entry = self._registry.get(device_key)
        return entry is not None and entry.inactivity.inactive

    def has_pending_timer(self, device_key: str) -> bool:
        entry = self._registry.get(device_key)
        return entry is not None and entry.inactivity.timer is not None

    def _schedule(self, device_key: str, state: InactivityRuntimeState, delay_s: float) -> None:
        if self._closed:
            return
        loop = asyncio.get_running_loop()
        if state.timer is not None:
            state.timer.cancel()
        state.generation += 1
        state.timer = loop.call_later(max(0.0, delay_s), self._expire, device_key, state.generation)

    def _expire(self, device_key: str, generation: int) -> None:
        state = self._registry.inactivity(device_key)
        if generation != state.generation:
            return
        state.timer = None
        if state.inactive:
            return
        entry = self._registry.get(device_key)
        if entry is not None and entry.lock.locked():
            _logger.debug("Device %s busy; deferring inactivity check", device_key)
            self._schedule(device_key, state, self._timeout.total_seconds())
            return
        now = self._clock()
        send_alert = not cooldown_active(state.last_inactive_alert_at, now, self._cooldown)
        state.inactive = True
        if send_alert:
            state.last_inactive_alert_at = now
        else:
            _logger.info("Cooldown active; skipping inactive alert for device=%s", device_key)
        _logger.info("Device %s inactive after %ss of silence", device_key, self._timeout.total_seconds())
        self._emit(self._on_inactive, device_key, now, send_alert)

    @staticmethod
    def _emit(callback: TransitionCallback | None, device_key: str, at: datetime, send_alert: bool) -> None:
        if callback is None:
            return
        try:
            callback(device_key, at, send_alert)
        except Exception:
            _logger.exception("Inactivity callback failed for device=%s", device_key)
