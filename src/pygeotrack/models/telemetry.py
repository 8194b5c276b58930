"""Telemetry payload and normalized sample models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from pygeotrack.ingestion.normalize import parse_timestamp, safe_bool, safe_float, safe_int
from pygeotrack.models._base import TrackerBaseModel, UtcDatetime


class Battery(TrackerBaseModel):
    """Battery telemetry reported by the device.

    Parameters
    ----------
    level : float or None
        Charge level, usually a percentage.
    is_charging : bool or None
        Whether the device reports external power.
    """

    level: float | None = None
    is_charging: bool | None = None

    @field_validator("level", mode="before")
    @classmethod
    def _coerce_level(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("is_charging", mode="before")
    @classmethod
    def _coerce_is_charging(cls, value: Any) -> bool | None:
        return safe_bool(value)


class TelemetryPayload(TrackerBaseModel):
    """Raw device payload as published on the transport.

    ``latitude`` and ``longitude`` are required and range-checked. Optional
    fields are parsed leniently: unparseable values become ``None`` rather
    than rejecting the whole sample.
    """

    latitude: float = Field(ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(ge=-180.0, le=180.0, allow_inf_nan=False)
    speed: float | None = None
    accuracy: float | None = None
    satellites: int | None = None
    battery: Battery | None = None
    timestamp: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("must be a number")
        return value

    @field_validator("speed", "accuracy", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("satellites", mode="before")
    @classmethod
    def _coerce_satellites(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("battery", mode="before")
    @classmethod
    def _coerce_battery(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _coerce_metadata(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}


class LocationSample(TrackerBaseModel):
    """A validated, normalized sample ready for the ingestion pipeline.

    Parameters
    ----------
    device_key : str
        External device identifier (from the transport topic).
    timestamp : datetime
        Device-supplied time, or the server receive time when the device
        sent none or an unparseable one (``timestamp_assigned`` is then set).
    received_at : datetime
        Server time the sample was accepted.
    """

    device_key: str
    latitude: float
    longitude: float
    timestamp: UtcDatetime
    received_at: UtcDatetime
    timestamp_assigned: bool = False
    speed: float | None = None
    accuracy: float | None = None
    satellites: int | None = None
    battery: Battery | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def telemetry(self) -> dict[str, Any]:
        """Optional telemetry fields that are present, JSON-ready (camelCase)."""
        data: dict[str, Any] = {}
        if self.speed is not None:
            data["speed"] = self.speed
        if self.accuracy is not None:
            data["accuracy"] = self.accuracy
        if self.satellites is not None:
            data["satellites"] = self.satellites
        if self.battery is not None:
            data["battery"] = self.battery.model_dump(by_alias=True)
        return data
