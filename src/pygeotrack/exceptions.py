"""Custom exception hierarchy for pygeotrack."""

from __future__ import annotations


class TrackerError(Exception):
    """Base exception for all pygeotrack errors."""


class TrackerConfigError(TrackerError):
    """Invalid or missing configuration."""


class PayloadError(TrackerError):
    """Telemetry payload could not be parsed or failed validation.

    The ingestion gateway catches this, logs it and drops the sample; it is
    never propagated into the transport layer.
    """

    def __init__(self, message: str, *, device_key: str = "") -> None:
        self.device_key = device_key
        super().__init__(message)


class PersistenceError(TrackerError):
    """Device or location store failure (read or write)."""


class NotificationError(TrackerError):
    """Notification channel failure (network, timeout, non-ok response)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class NotificationNotConfiguredError(NotificationError):
    """Notification channel has no credentials configured.

    Kept distinct from :class:`NotificationError` so callers can tell a
    deliberately disabled channel from a broken one.
    """


class GeocodeError(TrackerError):
    """Reverse-geocoding lookup failed or timed out."""
