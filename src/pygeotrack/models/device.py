"""Device record and geofence models."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any
from uuid import uuid4

from pydantic import Field, field_validator, model_validator

from pygeotrack.geo import Position, point_in_any
from pygeotrack.models._base import TrackerBaseModel, UtcDatetime
from pygeotrack.models.location import CurrentLocation

# A closed ring repeats its first position, so a triangle needs four.
_MIN_RING_POSITIONS = 4


def _as_position(value: Any) -> Position | None:
    if not isinstance(value, Sequence) or isinstance(value, str) or len(value) < 2:
        return None
    try:
        return (float(value[0]), float(value[1]))
    except (TypeError, ValueError):
        return None


def _as_ring(value: Any) -> tuple[Position, ...] | None:
    if not isinstance(value, Sequence) or isinstance(value, str):
        return None
    positions: list[Position] = []
    for item in value:
        position = _as_position(item)
        if position is None:
            return None
        positions.append(position)
    if len(positions) < _MIN_RING_POSITIONS:
        return None
    return tuple(positions)


def _depth(value: Any) -> int:
    depth = 0
    while isinstance(value, Sequence) and not isinstance(value, str) and value:
        depth += 1
        value = value[0]
    return depth


def _outer_rings(value: Any) -> list[Any]:
    """Extract candidate outer rings from any supported geofence shape.

    Supported inputs:

    * GeoJSON ``{"type": "Polygon", "coordinates": [[...outer], [...hole]]}``
    * GeoJSON ``{"type": "MultiPolygon", "coordinates": [[[...outer], ...], ...]}``
    * A single ring ``[[lng, lat], ...]``
    * A list of rings ``[[[lng, lat], ...], ...]``
    * MultiPolygon coordinates without the GeoJSON wrapper

    Holes are ignored: containment is tested against outer rings only.
    """
    if isinstance(value, dict):
        geo_type = value.get("type")
        coordinates = value.get("coordinates")
        if geo_type == "Polygon" and isinstance(coordinates, list) and coordinates:
            return [coordinates[0]]
        if geo_type == "MultiPolygon" and isinstance(coordinates, list):
            return [polygon[0] for polygon in coordinates if isinstance(polygon, list) and polygon]
        raise ValueError(f"unsupported geofence geometry type: {geo_type!r}")

    depth = _depth(value)
    if depth == 2:
        return [value]
    if depth == 3:
        return list(value)
    if depth == 4:
        return [polygon[0] for polygon in value if polygon]
    return []


class Geofence(TrackerBaseModel):
    """Allowed area of a device: zero or more closed polygons.

    A point is inside the geofence when it falls within at least one
    polygon. Rings are stored as ``(lng, lat)`` tuples.
    """

    polygons: tuple[tuple[Position, ...], ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _normalize_shape(cls, values: Any) -> Any:
        if isinstance(values, Geofence):
            return values
        if values is None:
            return {"polygons": ()}
        if isinstance(values, dict) and "type" not in values:
            candidates = values.get("polygons") or []
        else:
            candidates = _outer_rings(values)
        rings = [ring for ring in (_as_ring(c) for c in candidates) if ring is not None]
        return {"polygons": tuple(rings)}

    @property
    def configured(self) -> bool:
        return bool(self.polygons)

    def contains(self, lat: float, lng: float) -> bool:
        return point_in_any(self.polygons, lng, lat)


class DeviceRecord(TrackerBaseModel):
    """Authoritative device record.

    ``is_active`` is the stored flag. Readers should report the value from
    :func:`pygeotrack.state.policy.apply_stale_status`, which also accounts
    for a stale ``last_seen``.
    """

    device_key: str
    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str = ""
    last_seen: UtcDatetime | None = None
    is_active: bool = False
    current_location: CurrentLocation | None = None
    geofence: Geofence = Field(default_factory=Geofence)

    @field_validator("device_key")
    @classmethod
    def _normalize_key(cls, value: str) -> str:
        key = value.strip()
        if not key:
            raise ValueError("device_key must be non-empty")
        return key

    @field_validator("geofence", mode="before")
    @classmethod
    def _default_geofence(cls, value: Any) -> Any:
        return {"polygons": ()} if value is None else value

    @property
    def label(self) -> str:
        """Human-readable name for alert text."""
        return self.name or self.device_key
