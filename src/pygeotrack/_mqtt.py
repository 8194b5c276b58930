"""Internal MQTT broker parsing, topic routing, and runtime helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from pygeotrack._constants import COMMAND_TOPIC_SUFFIX, HEARTBEAT_TOPIC_SUFFIX, LOCATION_TOPIC_SUFFIX
from pygeotrack.exceptions import TrackerConfigError, TrackerError

_TLS_SCHEMES = frozenset({"mqtts", "ssl", "tls"})
_PLAIN_SCHEMES = frozenset({"mqtt", "tcp"})


@dataclass(frozen=True)
class BrokerAddress:
    """Parsed broker connection target."""

    host: str
    port: int
    tls: bool


@dataclass(frozen=True)
class TelemetryMessage:
    """One inbound device message, routed by topic."""

    device_key: str
    kind: str
    topic: str
    payload: bytes


def parse_broker_url(url: str) -> BrokerAddress:
    """Parse ``mqtt://host[:port]`` / ``mqtts://host[:port]``.

    A bare ``host[:port]`` is treated as plain MQTT.
    """
    value = url.strip()
    if not value:
        raise TrackerConfigError("Broker URL is empty")
    if "://" not in value:
        value = f"mqtt://{value}"

    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    if scheme not in _TLS_SCHEMES | _PLAIN_SCHEMES:
        raise TrackerConfigError(f"Unsupported broker scheme: {parts.scheme!r}")
    if not parts.hostname:
        raise TrackerConfigError(f"Broker URL has no host: {url!r}")

    tls = scheme in _TLS_SCHEMES
    try:
        port = parts.port
    except ValueError as exc:
        raise TrackerConfigError(f"Broker URL has an invalid port: {url!r}") from exc
    return BrokerAddress(host=parts.hostname, port=port or (8883 if tls else 1883), tls=tls)


def subscription_topics(prefix: str) -> list[str]:
    return [f"{prefix}+/{LOCATION_TOPIC_SUFFIX}", f"{prefix}+/{HEARTBEAT_TOPIC_SUFFIX}"]


def command_topic(prefix: str, device_key: str) -> str:
    return f"{prefix}{device_key}/{COMMAND_TOPIC_SUFFIX}"


def extract_device_key(topic: str, prefix: str) -> tuple[str, str] | None:
    """Return ``(device_key, kind)`` for an inbound topic, or ``None``.

    *kind* is ``"location"`` or ``"heartbeat"``; anything else (including
    our own command topic) is ignored.
    """
    if not topic.startswith(prefix):
        return None
    rest = topic[len(prefix) :]
    device_key, sep, kind = rest.partition("/")
    if not sep or not device_key or kind not in (LOCATION_TOPIC_SUFFIX, HEARTBEAT_TOPIC_SUFFIX):
        return None
    return device_key, kind


class TrackerMqttRuntime:
    """Threaded paho-mqtt runtime that emits device messages onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        topic_prefix: str,
        on_message: Callable[[TelemetryMessage], None],
        keepalive: int = 60,
        username: str | None = None,
        password: str | None = None,
        client_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._prefix = topic_prefix
        self._on_message = on_message
        self._keepalive = keepalive
        self._username = username
        self._password = password
        self._client_id = client_id or f"pygeotrack-{uuid.uuid4().hex[:12]}"
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self, broker: BrokerAddress) -> None:
        """Connect and subscribe to the device topics."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s tls=%s prefix=%s client_id=%s",
            broker.host,
            broker.port,
            broker.tls,
            self._prefix,
            self._client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if self._username:
            client.username_pw_set(self._username, self._password)
        if broker.tls:
            client.tls_set()
        client.reconnect_delay_set(min_delay=1, max_delay=30)

        topics = subscription_topics(self._prefix)

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("MQTT connected to %s:%s", broker.host, broker.port)
            # Subscriptions are not kept across clean-session reconnects.
            for topic in topics:
                self._logger.debug("MQTT subscribing topic=%s", topic)
                c.subscribe(topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            routed = extract_device_key(msg.topic, self._prefix)
            if routed is None:
                self._logger.debug("Ignoring message on topic=%s", msg.topic)
                return
            device_key, kind = routed
            self._logger.debug("Received PUBLISH topic=%s bytes=%d", msg.topic, len(msg.payload))
            message = TelemetryMessage(device_key=device_key, kind=kind, topic=msg.topic, payload=bytes(msg.payload))
            try:
                self._loop.call_soon_threadsafe(self._on_message, message)
            except RuntimeError:
                self._logger.debug("Event loop closed; dropping message on topic=%s", msg.topic)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s; reconnecting", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect_async(broker.host, broker.port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def publish_command(self, device_key: str, command: dict[str, Any]) -> None:
        """Publish a JSON command to ``<prefix><device_key>/command``.

        Raises
        ------
        TrackerError
            The runtime is not running or the client rejected the publish.
        """
        client = self._client
        if client is None or not self._running:
            raise TrackerError("MQTT runtime is not running")
        topic = command_topic(self._prefix, device_key)
        info = client.publish(topic, json.dumps(command), qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TrackerError(f"MQTT publish to {topic} failed: {mqtt.error_string(info.rc)}")
        self._logger.debug("MQTT command queued topic=%s mid=%s", topic, info.mid)

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
