"""Base model shared by all pygeotrack data models.

Every model inherits from :class:`TrackerBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase device/JSON keys
  (``isCharging``, ``lastSeen``) map to snake_case fields.
* ``populate_by_name`` so Python callers can use field names directly.
* Frozen instances; updates go through ``model_copy(update=...)``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from pygeotrack.ingestion.normalize import ensure_utc


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
"""Datetime that is always timezone-aware UTC once validated."""


def utcnow() -> datetime:
    return datetime.now(UTC)


class TrackerBaseModel(BaseModel):
    """Base for pygeotrack models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )
