"""High-level async facade wiring the tracker pipeline together."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import aiohttp

from pygeotrack._constants import EVENT_DEVICE_INACTIVE, HEARTBEAT_TOPIC_SUFFIX
from pygeotrack._mqtt import TelemetryMessage, TrackerMqttRuntime, parse_broker_url
from pygeotrack._tasks import BackgroundTasks
from pygeotrack._telegram import TelegramClient
from pygeotrack.alerts import AlertDispatcher, Notifier
from pygeotrack.config import TrackerConfig
from pygeotrack.exceptions import PersistenceError, TrackerError
from pygeotrack.geocode import AddressCache, Geocoder, NominatimGeocoder
from pygeotrack.geofence import GeofenceEvaluator
from pygeotrack.history import LocationHistoryWriter
from pygeotrack.inactivity import InactivityScheduler
from pygeotrack.ingestion.gateway import IngestionGateway, RawPayload
from pygeotrack.models._base import utcnow
from pygeotrack.models.device import DeviceRecord
from pygeotrack.models.visit import Visit
from pygeotrack.realtime import RealtimeBroadcaster
from pygeotrack.repository import DeviceRepository
from pygeotrack.state.runtime import DeviceRuntimeRegistry
from pygeotrack.state.store import DeviceStateStore
from pygeotrack.visits import VisitParams, cluster_visits

_logger = logging.getLogger(__name__)


class TrackerService:
    """Async tracker service.

    Usage::

        async with TrackerService(TrackerConfig.from_env(), repository) as service:
            with service.broadcaster.subscribe() as events:
                async for event in events:
                    ...

    Parameters
    ----------
    config : TrackerConfig
        Service configuration.
    repository : DeviceRepository
        Device and location persistence.
    http_session : aiohttp.ClientSession, optional
        Shared session for Telegram and Nominatim. Created (and closed) by
        the service when omitted.
    broadcaster : RealtimeBroadcaster, optional
        Realtime fan-out; a private one is created when omitted.
    notifier : Notifier, optional
        Alert channel. Defaults to a :class:`TelegramClient` built from the
        configured bot token.
    geocoder : Geocoder, optional
        Reverse geocoder. Defaults to Nominatim when geocoding is enabled.
    clock : callable, optional
        Source of "now" (UTC); overridable for tests.
    """

    def __init__(
        self,
        config: TrackerConfig,
        repository: DeviceRepository,
        *,
        http_session: aiohttp.ClientSession | None = None,
        broadcaster: RealtimeBroadcaster | None = None,
        notifier: Notifier | None = None,
        geocoder: Geocoder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._repository = repository
        self._http_session = http_session
        self._external_session = http_session is not None
        self._broadcaster = broadcaster or RealtimeBroadcaster()
        self._notifier = notifier
        self._geocoder = geocoder
        self._clock = clock

        self._registry = DeviceRuntimeRegistry()
        self._tasks = BackgroundTasks()
        self._store = DeviceStateStore(
            repository,
            inactivity_timeout=timedelta(seconds=config.inactivity_timeout),
            clock=clock,
        )
        self._history = LocationHistoryWriter(repository, clock=clock)
        self._geofence = GeofenceEvaluator(
            self._registry,
            exit_dwell=timedelta(seconds=config.geofence_exit_dwell),
            cooldown=timedelta(seconds=config.geofence_alert_cooldown),
            clock=clock,
        )
        self._scheduler = InactivityScheduler(
            self._registry,
            timeout=timedelta(seconds=config.inactivity_timeout),
            alert_cooldown=timedelta(seconds=config.inactivity_alert_cooldown),
            on_inactive=self._on_inactive,
            on_active=self._on_active,
            clock=clock,
        )

        self._alerts: AlertDispatcher | None = None
        self._gateway: IngestionGateway | None = None
        self._mqtt: TrackerMqttRuntime | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    async def __aenter__(self) -> TrackerService:
        self._loop = asyncio.get_running_loop()
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()

        notifier = self._notifier
        if notifier is None:
            notifier = TelegramClient(
                self._http_session,
                self._config.telegram_bot_token,
                timeout=self._config.notify_timeout,
            )
        geocoder = self._geocoder
        if geocoder is None and self._config.geocode_enabled:
            geocoder = NominatimGeocoder(
                self._http_session,
                user_agent=self._config.geocode_user_agent,
                timeout=self._config.geocode_timeout,
            )
        address_cache = AddressCache(
            geocoder if self._config.geocode_enabled else None,
            ttl=timedelta(seconds=self._config.address_cache_ttl),
            clock=self._clock,
        )
        self._alerts = AlertDispatcher(
            notifier,
            self._config.telegram_chat_id,
            tasks=self._tasks,
            address_cache=address_cache,
            stop_terms=self._config.address_stop_terms,
            timeout=self._config.notify_timeout,
            clock=self._clock,
        )
        self._gateway = IngestionGateway(
            registry=self._registry,
            store=self._store,
            broadcaster=self._broadcaster,
            history=self._history,
            geofence=self._geofence,
            inactivity=self._scheduler,
            alerts=self._alerts,
            clock=self._clock,
        )

        try:
            await self._bootstrap_timers()
            self._start_mqtt()
        except BaseException:
            await self._shutdown()
            raise
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self._shutdown()

    async def _shutdown(self) -> None:
        self._stop_mqtt()
        await self._tasks.drain(timeout=self._config.notify_timeout)
        await self._tasks.cancel_all()
        # After the drain: ingests still in flight would re-arm timers.
        self._scheduler.shutdown()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._gateway = None
        self._alerts = None
        self._loop = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def broadcaster(self) -> RealtimeBroadcaster:
        return self._broadcaster

    @property
    def mqtt_running(self) -> bool:
        return self._mqtt is not None and self._mqtt.is_running

    async def ingest(self, device_key: str, raw_payload: RawPayload) -> None:
        """Feed one location sample through the pipeline. Never raises."""
        await self._require_gateway().ingest(device_key, raw_payload)

    async def heartbeat(self, device_key: str) -> None:
        """Record a location-less heartbeat. Never raises."""
        await self._require_gateway().heartbeat(device_key)

    async def get_device(self, device_key: str) -> DeviceRecord | None:
        """Device record with ``is_active`` reflecting the stale rule."""
        return await self._store.get(device_key)

    async def list_devices(self) -> list[DeviceRecord]:
        return await self._store.list_devices()

    async def recent_visits(
        self,
        device_key: str,
        window: timedelta = timedelta(hours=24),
        params: VisitParams | None = None,
    ) -> list[Visit]:
        """Cluster the device's history over the trailing *window* into visits."""
        since = self._clock() - window
        records = await self._repository.list_locations(device_key, since=since)
        return cluster_visits(records, params)

    def send_command(self, device_key: str, command: dict[str, Any]) -> None:
        """Publish a command to a device over MQTT.

        Raises
        ------
        TrackerError
            MQTT is not configured or not running.
        """
        if self._mqtt is None:
            raise TrackerError("MQTT is not configured; cannot send commands")
        self._mqtt.publish_command(device_key, command)
        _logger.info("Command sent to device=%s", device_key)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_gateway(self) -> IngestionGateway:
        if self._gateway is None:
            raise TrackerError("Service not started. Use 'async with TrackerService(...) as service:'")
        return self._gateway

    async def _bootstrap_timers(self) -> None:
        devices = await self._repository.list_devices()
        count = self._scheduler.bootstrap((device.device_key, _last_activity(device)) for device in devices)
        _logger.info("Inactivity timers bootstrapped for %d device(s)", count)

    def _start_mqtt(self) -> None:
        if not self._config.mqtt_broker_url:
            _logger.info("No MQTT broker configured; listener disabled")
            return
        loop = self._loop or asyncio.get_running_loop()
        broker = parse_broker_url(self._config.mqtt_broker_url)
        runtime = TrackerMqttRuntime(
            loop=loop,
            topic_prefix=self._config.mqtt_topic_prefix,
            on_message=self._on_mqtt_message,
            keepalive=self._config.mqtt_keepalive,
            username=self._config.mqtt_username,
            password=self._config.mqtt_password,
            logger=_logger.getChild("mqtt"),
        )
        runtime.start(broker)
        self._mqtt = runtime

    def _stop_mqtt(self) -> None:
        runtime = self._mqtt
        self._mqtt = None
        if runtime is not None:
            runtime.stop()

    def _on_mqtt_message(self, message: TelemetryMessage) -> None:
        # Tasks are created in arrival order and the device lock is FIFO,
        # so per-device processing order matches broker delivery order.
        if message.kind == HEARTBEAT_TOPIC_SUFFIX:
            self._tasks.spawn(self.heartbeat(message.device_key), name=f"heartbeat:{message.device_key}")
        else:
            self._tasks.spawn(self.ingest(message.device_key, message.payload), name=f"ingest:{message.device_key}")

    def _on_inactive(self, device_key: str, at: datetime, send_alert: bool) -> None:
        self._broadcaster.publish(EVENT_DEVICE_INACTIVE, {"deviceId": device_key, "at": at.isoformat()})
        self._tasks.spawn(
            self._handle_inactive(device_key, at, send_alert),
            name=f"inactive:{device_key}",
            timeout=self._status_task_timeout(),
        )

    def _on_active(self, device_key: str, at: datetime, send_alert: bool) -> None:
        if not send_alert:
            return
        self._tasks.spawn(
            self._send_status(device_key, inactive=False, at=at),
            name=f"active-alert:{device_key}",
            timeout=self._status_task_timeout(),
        )

    async def _handle_inactive(self, device_key: str, at: datetime, send_alert: bool) -> None:
        async with self._registry.lock(device_key):
            # A sample may have arrived between the timer firing and now.
            if not self._scheduler.is_inactive(device_key):
                _logger.info("Device %s came back before the inactive alert; skipped", device_key)
                return
            try:
                await self._store.mark_inactive(device_key)
            except PersistenceError:
                _logger.exception("Failed to mark device=%s inactive", device_key)
        if send_alert:
            await self._send_status(device_key, inactive=True, at=at)

    async def _send_status(self, device_key: str, *, inactive: bool, at: datetime) -> None:
        if self._alerts is None:
            return
        try:
            device = await self._store.get(device_key)
        except PersistenceError:
            _logger.exception("Failed to load device=%s for status alert", device_key)
            device = None
        await self._alerts.send_status_alert(device_key, device, inactive=inactive, at=at)

    def _status_task_timeout(self) -> float:
        return self._alerts.task_timeout if self._alerts is not None else self._config.notify_timeout * 2


def _last_activity(device: DeviceRecord) -> datetime | None:
    if device.last_seen is not None:
        return device.last_seen
    if device.current_location is not None:
        return device.current_location.timestamp
    return None


def load_devices(path: str) -> list[DeviceRecord]:
    """Load device records from a JSON file holding a list of objects."""
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, list):
        raise TrackerError(f"{path}: expected a JSON list of devices")
    return [DeviceRecord.model_validate(item) for item in data]
