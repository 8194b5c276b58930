"""pygeotrack - Async realtime core for GPS tracker telemetry."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pygeotrack")
except PackageNotFoundError:
    __version__ = "0+local"
from pygeotrack.alerts import AlertDispatcher
from pygeotrack.config import TrackerConfig
from pygeotrack.exceptions import (
    GeocodeError,
    NotificationError,
    NotificationNotConfiguredError,
    PayloadError,
    PersistenceError,
    TrackerConfigError,
    TrackerError,
)
from pygeotrack.geofence import GeofenceEvaluator, GeofenceEvent
from pygeotrack.inactivity import InactivityScheduler
from pygeotrack.models import (
    Battery,
    CurrentLocation,
    DeviceRecord,
    Geofence,
    LocationRecord,
    LocationSample,
    Visit,
)
from pygeotrack.realtime import RealtimeBroadcaster, RealtimeEvent
from pygeotrack.repository import DeviceRepository, InMemoryRepository
from pygeotrack.service import TrackerService
from pygeotrack.visits import VisitParams, cluster_visits

__all__ = [
    "__version__",
    "AlertDispatcher",
    "Battery",
    "CurrentLocation",
    "DeviceRecord",
    "DeviceRepository",
    "GeocodeError",
    "Geofence",
    "GeofenceEvaluator",
    "GeofenceEvent",
    "InMemoryRepository",
    "InactivityScheduler",
    "LocationRecord",
    "LocationSample",
    "NotificationError",
    "NotificationNotConfiguredError",
    "PayloadError",
    "PersistenceError",
    "RealtimeBroadcaster",
    "RealtimeEvent",
    "TrackerConfig",
    "TrackerConfigError",
    "TrackerError",
    "TrackerService",
    "Visit",
    "VisitParams",
    "cluster_visits",
]
