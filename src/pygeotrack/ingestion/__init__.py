"""Ingestion layer.

Adapters that receive raw telemetry (MQTT, direct calls) and turn it into
normalized samples for the state, history, geofence and inactivity
components.
"""

__all__: list[str] = []
