"""Geofence boundary-crossing detection.

Per-device state machine over ``Unknown`` / ``Inside`` / ``Outside``:

=========  ===========================  =========================================
From       Observation                  Action
=========  ===========================  =========================================
Unknown    inside or outside            record state, no alert
Outside    inside                       ENTER alert immediately (no cooldown)
Inside     outside                      start the outside dwell clock, no alert
Outside    outside, dwell >= exit_dwell EXIT alert, unless the last alert was
                                        EXIT and the cooldown has not elapsed
Inside     inside                       nothing
=========  ===========================  =========================================

Entering is reported at once. Leaving must first outlast ``exit_dwell`` so
GPS jitter along the boundary does not raise alerts; a confirmed return is
always reported, however recently an EXIT fired.

Runtime state is not persisted. After a restart every device starts again
from ``Unknown``, so a crossing seen on the first post-restart sample is
not alerted.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from pygeotrack.models._base import utcnow
from pygeotrack.models.device import Geofence
from pygeotrack.state.policy import cooldown_active
from pygeotrack.state.runtime import DeviceRuntimeRegistry, GeofenceEvent, GeofenceRuntimeState

_logger = logging.getLogger(__name__)

__all__ = ["GeofenceEvaluator", "GeofenceEvent", "GeofenceRuntimeState"]


class GeofenceEvaluator:
    """Classify samples against a device's geofence and decide on alerts.

    :meth:`evaluate` only mutates runtime state and returns the event to
    alert on; delivering the alert is the caller's job.
    """

    def __init__(
        self,
        registry: DeviceRuntimeRegistry,
        *,
        exit_dwell: timedelta,
        cooldown: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._exit_dwell = exit_dwell
        self._cooldown = cooldown
        self._clock = clock

    def evaluate(
        self,
        device_key: str,
        geofence: Geofence,
        lat: float,
        lng: float,
        now: datetime | None = None,
    ) -> GeofenceEvent | None:
        """Feed one observation; return the event to alert on, if any."""
        if not geofence.configured:
            return None

        now = now or self._clock()
        inside = geofence.contains(lat, lng)
        state = self._registry.geofence(device_key)

        if state.inside is None:
            state.inside = inside
            state.inside_since = now if inside else None
            state.outside_since = None if inside else now
            _logger.debug("Geofence first observation device=%s inside=%s", device_key, inside)
            return None

        was_inside = state.inside
        state.inside = inside

        if was_inside and not inside:
            state.outside_since = now
            state.inside_since = None
            _logger.debug("Geofence left device=%s; waiting for exit dwell", device_key)
            return None

        if not was_inside and inside:
            state.last_alert_at = now
            state.last_event = GeofenceEvent.ENTER
            state.inside_since = now
            state.outside_since = None
            return GeofenceEvent.ENTER

        if inside:
            return None

        # Still outside.
        if state.outside_since is None:
            state.outside_since = now
        if now - state.outside_since < self._exit_dwell:
            return None
        if state.last_event == GeofenceEvent.EXIT and cooldown_active(state.last_alert_at, now, self._cooldown):
            _logger.debug("Geofence EXIT suppressed by cooldown device=%s", device_key)
            return None
        state.last_alert_at = now
        state.last_event = GeofenceEvent.EXIT
        return GeofenceEvent.EXIT

    def state(self, device_key: str) -> GeofenceRuntimeState | None:
        """Current runtime state, or ``None`` if the device was never evaluated."""
        return self._registry.peek_geofence(device_key)
