"""Deterministic state policies.

Small pure functions shared by the store, the geofence evaluator and the
inactivity scheduler. They take ``now`` explicitly so callers decide which
clock applies.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from pygeotrack.models.device import DeviceRecord


def is_stale(last_seen: datetime | None, now: datetime, timeout: timedelta) -> bool:
    """Whether a device last seen at *last_seen* is past the inactivity timeout."""
    if last_seen is None:
        return False
    return now - last_seen > timeout


def apply_stale_status(device: DeviceRecord, now: datetime, timeout: timedelta) -> DeviceRecord:
    """Return the record as it should be reported to readers.

    A device whose ``last_seen`` is older than *timeout* is reported
    inactive even if the stored flag says otherwise. The stored record is
    never modified.
    """
    if device.is_active and is_stale(device.last_seen, now, timeout):
        return device.model_copy(update={"is_active": False})
    return device


def cooldown_active(previous_at: datetime | None, now: datetime, cooldown: timedelta) -> bool:
    """Whether an alert sent at *previous_at* still blocks a new one."""
    if previous_at is None:
        return False
    return now - previous_at < cooldown
