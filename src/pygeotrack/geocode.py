"""Reverse geocoding (Nominatim) with a TTL address cache."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Collection
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

import aiohttp

from pygeotrack._constants import ADDRESS_KEY_DECIMALS, NOMINATIM_REVERSE_URL
from pygeotrack.exceptions import GeocodeError
from pygeotrack.models._base import utcnow

_logger = logging.getLogger(__name__)

_POSTAL_CODE_RE = re.compile(r"^\d{5}$")
_MAX_SHORT_PARTS = 6


class Geocoder(Protocol):
    """Anything that can turn coordinates into an address.

    Implementations may raise :class:`~pygeotrack.exceptions.GeocodeError`;
    :class:`AddressCache` swallows it.
    """

    async def lookup(self, lat: float, lng: float) -> str | None: ...


class NominatimGeocoder:
    """OpenStreetMap Nominatim ``/reverse`` client."""

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        *,
        user_agent: str,
        timeout: float = 10.0,
        base_url: str = NOMINATIM_REVERSE_URL,
    ) -> None:
        self._http = http_session
        self._user_agent = user_agent
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._base_url = base_url

    async def lookup(self, lat: float, lng: float) -> str | None:
        """Return the display name for a point, ``None`` when there is none.

        Raises
        ------
        GeocodeError
            On network errors, timeouts, non-200 responses or invalid JSON.
        """
        params = {
            "format": "jsonv2",
            "lat": f"{lat}",
            "lon": f"{lng}",
            "zoom": "18",
            "addressdetails": "1",
        }
        headers = {"Accept": "application/json", "User-Agent": self._user_agent}
        try:
            async with self._http.get(self._base_url, params=params, headers=headers, timeout=self._timeout) as resp:
                if resp.status != 200:
                    raise GeocodeError(f"Reverse geocode failed: HTTP {resp.status}")
                data: Any = await resp.json(content_type=None)
        except GeocodeError:
            raise
        except TimeoutError as exc:
            raise GeocodeError("Reverse geocode timed out") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            raise GeocodeError(f"Reverse geocode failed: {exc}") from exc

        if not isinstance(data, dict):
            return None
        display = data.get("display_name")
        if isinstance(display, str) and display.strip():
            return display.strip()
        return None


@dataclass(frozen=True, slots=True)
class _CacheEntry:
    value: str
    stored_at: datetime


def address_key(lat: float, lng: float) -> str:
    return f"{lat:.{ADDRESS_KEY_DECIMALS}f},{lng:.{ADDRESS_KEY_DECIMALS}f}"


class AddressCache:
    """Memoize geocoder lookups by rounded coordinates with a TTL.

    Only non-empty results are cached, so a failed or empty lookup is
    retried next time. Expired entries are dropped whenever a new one is
    stored, and once *max_entries* is reached the oldest entry goes.
    :meth:`lookup` never raises.
    """

    def __init__(
        self,
        geocoder: Geocoder | None,
        *,
        ttl: timedelta,
        max_entries: int = 1024,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._geocoder = geocoder
        self._ttl = ttl
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def lookup(self, lat: float, lng: float) -> str | None:
        if self._geocoder is None or not (math.isfinite(lat) and math.isfinite(lng)):
            return None

        key = address_key(lat, lng)
        now = self._clock()
        cached = self._entries.get(key)
        if cached is not None:
            if now - cached.stored_at < self._ttl:
                return cached.value
            del self._entries[key]

        try:
            value = await self._geocoder.lookup(lat, lng)
        except GeocodeError as exc:
            _logger.warning("Reverse geocode unavailable for %s: %s", key, exc)
            return None
        except Exception:
            _logger.exception("Reverse geocode failed for %s", key)
            return None

        if value:
            self._entries.pop(key, None)
            self._prune(now)
            self._entries[key] = _CacheEntry(value=value, stored_at=now)
        return value

    def _prune(self, now: datetime) -> None:
        expired = [key for key, entry in self._entries.items() if now - entry.stored_at >= self._ttl]
        for key in expired:
            del self._entries[key]
        # Insertion order is storage order.
        while len(self._entries) >= self._max_entries:
            del self._entries[next(iter(self._entries))]


def short_address(address: str, *, stop_terms: Collection[str] = ()) -> str:
    """Trim a full display name to its leading, most specific parts.

    Stops at the first postal code or *stop_terms* entry (typically
    region/country names) and keeps at most six parts.
    """
    parts = [p.strip() for p in str(address).split(",") if p.strip()]
    head: list[str] = []
    for part in parts:
        if part in stop_terms or _POSTAL_CODE_RE.match(part):
            break
        head.append(part)
        if len(head) >= _MAX_SHORT_PARTS:
            break
    return ", ".join(head) if head else str(address)
