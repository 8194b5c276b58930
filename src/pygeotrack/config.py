"""Service configuration for pygeotrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pygeotrack._constants import DEFAULT_TOPIC_PREFIX
from pygeotrack.exceptions import TrackerConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


_DURATION_FIELDS: tuple[str, ...] = (
    "inactivity_timeout",
    "inactivity_alert_cooldown",
    "geofence_exit_dwell",
    "geofence_alert_cooldown",
    "address_cache_ttl",
    "geocode_timeout",
    "notify_timeout",
)


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Service configuration.

    All durations are expressed in seconds.

    Parameters
    ----------
    mqtt_broker_url : str or None
        Broker URL (``mqtt://host:1883`` or ``mqtts://host:8883``). When
        ``None`` the MQTT listener is not started and samples can only be
        fed through :meth:`pygeotrack.service.TrackerService.ingest`.
    mqtt_topic_prefix : str
        Topic prefix; devices publish to ``<prefix><device_key>/location``
        and ``<prefix><device_key>/heartbeat``.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_username, mqtt_password : str or None
        Optional broker credentials.
    inactivity_timeout : float
        Silence window after which a device is declared inactive. Also the
        staleness threshold used when reporting ``is_active`` at read time.
    inactivity_alert_cooldown : float
        Minimum time between two "inactive" alerts (and, separately, two
        "active again" alerts) for the same device.
    geofence_exit_dwell : float
        How long a device must stay outside its geofence before an EXIT
        alert is sent.
    geofence_alert_cooldown : float
        Minimum time between two repeated EXIT alerts for the same device.
    address_cache_ttl : float
        Time-to-live of cached reverse-geocoding results.
    address_stop_terms : tuple of str
        Address parts (region or country names) at which the short address
        shown in alerts is cut. Read from the comma-separated
        ``GEOTRACK_ADDRESS_STOP_TERMS``.
    geocode_enabled : bool
        Enrich alert text with a reverse-geocoded address.
    geocode_timeout : float
        Per-request timeout of the reverse geocoder.
    geocode_user_agent : str
        ``User-Agent`` sent to Nominatim (its usage policy requires one).
    telegram_bot_token : str or None
        Telegram bot token. Without it alerts are logged and skipped.
    telegram_chat_id : str or None
        Destination chat for alerts.
    notify_timeout : float
        Upper bound for a single alert delivery, address lookup included.
    """

    mqtt_broker_url: str | None = None
    mqtt_topic_prefix: str = DEFAULT_TOPIC_PREFIX
    mqtt_keepalive: int = 60
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    inactivity_timeout: float = 300.0
    inactivity_alert_cooldown: float = 600.0
    geofence_exit_dwell: float = 30.0
    geofence_alert_cooldown: float = 600.0
    address_cache_ttl: float = 24 * 3600.0
    address_stop_terms: tuple[str, ...] = ()
    geocode_enabled: bool = True
    geocode_timeout: float = 10.0
    geocode_user_agent: str = "pygeotrack/1.0 (tracker-alerts)"
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    notify_timeout: float = 10.0

    def __post_init__(self) -> None:
        for name in _DURATION_FIELDS:
            value = getattr(self, name)
            if value < 0:
                raise TrackerConfigError(f"{name} must be >= 0, got {value}")
        if self.mqtt_keepalive <= 0:
            raise TrackerConfigError(f"mqtt_keepalive must be > 0, got {self.mqtt_keepalive}")

    @property
    def mqtt_enabled(self) -> bool:
        return bool(self.mqtt_broker_url)

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from ``GEOTRACK_*`` environment variables.

        Explicit keyword arguments override environment values.

        Raises
        ------
        TrackerConfigError
            If a numeric variable cannot be parsed or a value is out of range.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "GEOTRACK_MQTT_BROKER_URL": "mqtt_broker_url",
            "GEOTRACK_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
            "GEOTRACK_MQTT_USERNAME": "mqtt_username",
            "GEOTRACK_MQTT_PASSWORD": "mqtt_password",
            "GEOTRACK_GEOCODE_USER_AGENT": "geocode_user_agent",
            "GEOTRACK_TELEGRAM_BOT_TOKEN": "telegram_bot_token",
            "GEOTRACK_TELEGRAM_CHAT_ID": "telegram_chat_id",
        }
        _ENV_FLOAT_MAP = {
            "GEOTRACK_INACTIVITY_TIMEOUT": "inactivity_timeout",
            "GEOTRACK_INACTIVITY_ALERT_COOLDOWN": "inactivity_alert_cooldown",
            "GEOTRACK_GEOFENCE_EXIT_DWELL": "geofence_exit_dwell",
            "GEOTRACK_GEOFENCE_ALERT_COOLDOWN": "geofence_alert_cooldown",
            "GEOTRACK_ADDRESS_CACHE_TTL": "address_cache_ttl",
            "GEOTRACK_GEOCODE_TIMEOUT": "geocode_timeout",
            "GEOTRACK_NOTIFY_TIMEOUT": "notify_timeout",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and val.strip():
                config_kwargs[field_name] = val.strip()

        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = float(val)
            except ValueError as exc:
                raise TrackerConfigError(f"{env_key} is not a number: {val!r}") from exc

        keepalive_env = env.get("GEOTRACK_MQTT_KEEPALIVE")
        if keepalive_env is not None and "mqtt_keepalive" not in overrides:
            try:
                config_kwargs["mqtt_keepalive"] = int(keepalive_env)
            except ValueError as exc:
                raise TrackerConfigError(f"GEOTRACK_MQTT_KEEPALIVE is not an integer: {keepalive_env!r}") from exc

        stop_terms_env = env.get("GEOTRACK_ADDRESS_STOP_TERMS")
        if stop_terms_env is not None and "address_stop_terms" not in overrides:
            config_kwargs["address_stop_terms"] = tuple(
                term.strip() for term in stop_terms_env.split(",") if term.strip()
            )

        if "geocode_enabled" not in overrides:
            config_kwargs["geocode_enabled"] = _env_bool(env.get("GEOTRACK_GEOCODE_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
