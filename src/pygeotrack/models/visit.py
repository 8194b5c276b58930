"""Visit model (derived from location history, never persisted)."""

from __future__ import annotations

from datetime import timedelta

from pygeotrack.models._base import TrackerBaseModel, UtcDatetime


class Visit(TrackerBaseModel):
    """A clustered stay: nearby-in-space, close-in-time samples.

    Parameters
    ----------
    start, end : datetime
        Timestamps of the first and last sample in the cluster.
    center_lat, center_lng : float
        Running-mean centroid of the samples that moved it.
    count : int
        Number of samples assigned to the cluster.
    """

    start: UtcDatetime
    end: UtcDatetime
    center_lat: float
    center_lng: float
    count: int

    @property
    def duration(self) -> timedelta:
        return self.end - self.start
