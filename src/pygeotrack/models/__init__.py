"""Data models for tracker devices, telemetry and derived analytics."""

from pygeotrack.models._base import TrackerBaseModel, UtcDatetime, utcnow
from pygeotrack.models.device import DeviceRecord, Geofence
from pygeotrack.models.location import CurrentLocation, LocationRecord
from pygeotrack.models.telemetry import Battery, LocationSample, TelemetryPayload
from pygeotrack.models.visit import Visit

__all__ = [
    "Battery",
    "CurrentLocation",
    "DeviceRecord",
    "Geofence",
    "LocationRecord",
    "LocationSample",
    "TelemetryPayload",
    "TrackerBaseModel",
    "UtcDatetime",
    "Visit",
    "utcnow",
]
