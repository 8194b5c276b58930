"""Internal constants shared across the library."""

DEFAULT_TOPIC_PREFIX = "gpstracker/device/"
LOCATION_TOPIC_SUFFIX = "location"
HEARTBEAT_TOPIC_SUFFIX = "heartbeat"
COMMAND_TOPIC_SUFFIX = "command"

TELEGRAM_API_BASE = "https://api.telegram.org"
NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"
MAP_LINK_TEMPLATE = "https://maps.google.com/?q={lat:.6f},{lng:.6f}"

# Realtime event names pushed to live subscribers.
EVENT_LOCATION_UPDATE = "locationUpdate"
EVENT_DEVICE_HEARTBEAT = "deviceHeartbeat"
EVENT_DEVICE_INACTIVE = "deviceInactive"

EARTH_RADIUS_M = 6_371_000.0

# Coordinates are rounded to this many decimals (~1 m) for address caching.
ADDRESS_KEY_DECIMALS = 5
