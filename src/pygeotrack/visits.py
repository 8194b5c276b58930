"""Visit clustering over recent location history."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from pygeotrack.geo import haversine_m
from pygeotrack.models.visit import Visit


class _Fix(Protocol):
    @property
    def latitude(self) -> float: ...

    @property
    def longitude(self) -> float: ...

    @property
    def timestamp(self) -> datetime: ...


@dataclass(frozen=True, slots=True)
class VisitParams:
    """Parameters controlling visit segmentation."""

    # Within this distance of the centroid a point joins and moves the centroid.
    enter_radius_m: float = 25.0
    # Beyond this distance the current cluster is closed. Points between the
    # two radii stay in the cluster without moving the centroid.
    exit_radius_m: float = 35.0
    min_duration: timedelta = timedelta(seconds=30)
    min_points: int = 1

    def __post_init__(self) -> None:
        if self.exit_radius_m < self.enter_radius_m:
            raise ValueError("exit_radius_m must be >= enter_radius_m")


def recent_samples(samples: Iterable[_Fix], now: datetime, window: timedelta = timedelta(hours=24)) -> list[_Fix]:
    """Samples whose timestamp falls within the trailing *window*."""
    cutoff = now - window
    return [sample for sample in samples if sample.timestamp >= cutoff]


def cluster_visits(samples: Sequence[_Fix], params: VisitParams | None = None) -> list[Visit]:
    """Cluster samples into visits in a single pass.

    Samples are ordered by timestamp first (stable, so ties keep input
    order); identical inputs always give identical visits. A cluster is
    emitted when it lasted at least ``min_duration`` or holds at least
    ``min_points`` samples.
    """
    params = params or VisitParams()
    ordered = sorted(samples, key=lambda s: s.timestamp)

    visits: list[Visit] = []
    center_lat = 0.0
    center_lng = 0.0
    count = 0
    start: datetime | None = None
    end: datetime | None = None

    def flush() -> None:
        if start is None or end is None or count == 0:
            return
        if end - start >= params.min_duration or count >= params.min_points:
            visits.append(Visit(start=start, end=end, center_lat=center_lat, center_lng=center_lng, count=count))

    for sample in ordered:
        lat = sample.latitude
        lng = sample.longitude
        ts = sample.timestamp
        if count == 0:
            center_lat, center_lng, count, start, end = lat, lng, 1, ts, ts
            continue

        distance = haversine_m(center_lat, center_lng, lat, lng)
        if distance <= params.enter_radius_m:
            center_lat = (center_lat * count + lat) / (count + 1)
            center_lng = (center_lng * count + lng) / (count + 1)
            count += 1
            end = ts
        elif distance > params.exit_radius_m:
            flush()
            center_lat, center_lng, count, start, end = lat, lng, 1, ts, ts
        else:
            count += 1
            end = ts

    flush()
    return visits
