"""Ingestion gateway: the entry point of every telemetry sample.

For each accepted sample, in this order and under the device's lock:

1. device state update, immediately followed by the inactivity timer reset
2. realtime ``locationUpdate`` broadcast
3. location history append (failures are logged, the pipeline goes on)
4. geofence evaluation, with any alert spawned in the background

Malformed payloads are logged and dropped; :meth:`IngestionGateway.ingest`
never raises, so one bad message cannot stop the transport loop.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from pygeotrack._constants import EVENT_DEVICE_HEARTBEAT, EVENT_LOCATION_UPDATE
from pygeotrack.alerts import AlertDispatcher
from pygeotrack.exceptions import PayloadError, PersistenceError
from pygeotrack.geofence import GeofenceEvaluator
from pygeotrack.history import LocationHistoryWriter
from pygeotrack.inactivity import InactivityScheduler
from pygeotrack.models._base import utcnow
from pygeotrack.models.device import DeviceRecord
from pygeotrack.models.telemetry import LocationSample, TelemetryPayload
from pygeotrack.realtime import RealtimeBroadcaster
from pygeotrack.state.runtime import DeviceRuntimeRegistry
from pygeotrack.state.store import DeviceStateStore

_logger = logging.getLogger(__name__)

RawPayload = bytes | bytearray | str | Mapping[str, Any]


def _decode(raw: RawPayload, device_key: str) -> Any:
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        return json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadError(f"Payload is not valid JSON: {exc}", device_key=device_key) from exc


def parse_sample(device_key: str, raw: RawPayload, *, received_at: datetime) -> LocationSample:
    """Validate and normalize a raw device payload.

    A missing or malformed ``timestamp`` is replaced by *received_at*.

    Raises
    ------
    PayloadError
        Empty device key, non-JSON body, non-object JSON, or missing or
        out-of-range ``latitude``/``longitude``.
    """
    key = device_key.strip() if isinstance(device_key, str) else ""
    if not key:
        raise PayloadError("Missing device key")

    body = _decode(raw, key)
    if not isinstance(body, dict):
        raise PayloadError("Payload must be a JSON object", device_key=key)

    try:
        payload = TelemetryPayload.model_validate(body)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise PayloadError(f"Invalid telemetry fields: {fields}", device_key=key) from exc

    return LocationSample(
        device_key=key,
        latitude=payload.latitude,
        longitude=payload.longitude,
        timestamp=payload.timestamp or received_at,
        received_at=received_at,
        timestamp_assigned=payload.timestamp is None,
        speed=payload.speed,
        accuracy=payload.accuracy,
        satellites=payload.satellites,
        battery=payload.battery,
        metadata=payload.metadata,
    )


def location_update_payload(sample: LocationSample) -> dict[str, Any]:
    return {
        "deviceId": sample.device_key,
        "location": {
            "location": {"type": "Point", "coordinates": [sample.longitude, sample.latitude]},
            "timestamp": sample.timestamp.isoformat(),
            **sample.telemetry(),
        },
    }


class IngestionGateway:
    """Validate samples and drive the per-device pipeline."""

    def __init__(
        self,
        *,
        registry: DeviceRuntimeRegistry,
        store: DeviceStateStore,
        broadcaster: RealtimeBroadcaster,
        history: LocationHistoryWriter,
        geofence: GeofenceEvaluator,
        inactivity: InactivityScheduler,
        alerts: AlertDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._store = store
        self._broadcaster = broadcaster
        self._history = history
        self._geofence = geofence
        self._inactivity = inactivity
        self._alerts = alerts
        self._clock = clock

    async def ingest(self, device_key: str, raw_payload: RawPayload) -> None:
        """Process one raw sample. Never raises."""
        try:
            sample = parse_sample(device_key, raw_payload, received_at=self._clock())
        except PayloadError as exc:
            _logger.error("Dropping sample for device=%s: %s", device_key or "<none>", exc)
            return

        try:
            async with self._registry.lock(sample.device_key):
                await self._process(sample)
        except Exception:
            _logger.exception("Unexpected error processing sample for device=%s", sample.device_key)

    async def heartbeat(self, device_key: str) -> None:
        """Mark a device seen without a location. Never raises."""
        key = device_key.strip()
        if not key:
            _logger.error("Dropping heartbeat without device key")
            return
        try:
            async with self._registry.lock(key):
                try:
                    device = await self._store.touch(key)
                except PersistenceError:
                    _logger.exception("Heartbeat state update failed for device=%s", key)
                    return
                if device is None:
                    _logger.warning("Heartbeat for unknown device=%s; dropped", key)
                    return
                self._inactivity.bump(key)
                last_seen = device.last_seen or self._clock()
                self._broadcaster.publish(
                    EVENT_DEVICE_HEARTBEAT,
                    {"deviceId": key, "lastSeen": last_seen.isoformat()},
                )
        except Exception:
            _logger.exception("Unexpected error processing heartbeat for device=%s", key)

    async def _process(self, sample: LocationSample) -> None:
        key = sample.device_key
        device: DeviceRecord | None = None
        state_failed = False
        try:
            device = await self._store.update_current(key, sample)
        except PersistenceError:
            state_failed = True
            _logger.exception("Device state update failed for device=%s", key)

        if device is None and not state_failed:
            _logger.warning("Sample for unknown device=%s; dropped", key)
            return

        # Reset the timer before the next await so it cannot expire while
        # the rest of this sample is still being processed.
        self._inactivity.bump(key)

        self._broadcaster.publish(EVENT_LOCATION_UPDATE, location_update_payload(sample))

        try:
            record = await self._history.append(key, sample)
            _logger.debug("Location stored device=%s id=%s ts=%s", key, record.id, record.timestamp.isoformat())
        except PersistenceError:
            _logger.exception("Location history append failed for device=%s", key)

        if device is not None:
            event = self._geofence.evaluate(key, device.geofence, sample.latitude, sample.longitude)
            if event is not None:
                _logger.info("Geofence %s for device=%s", event, key)
                self._alerts.dispatch_geofence(device, event, sample.latitude, sample.longitude)

        _logger.info("Processed location update for device=%s", key)
