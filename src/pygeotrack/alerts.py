"""Alert formatting and best-effort delivery.

Alerts are side effects of ingestion and must never slow it down or fail
it: the ``dispatch_*`` methods spawn the work as background tasks with a
bounded runtime, and every failure (geocoding, channel, timeout) is logged
and swallowed.
"""

from __future__ import annotations

import asyncio
import html
import logging
from collections.abc import Callable, Collection
from datetime import datetime
from typing import Any, Protocol

from pygeotrack._constants import MAP_LINK_TEMPLATE
from pygeotrack._tasks import BackgroundTasks
from pygeotrack.exceptions import NotificationError, NotificationNotConfiguredError
from pygeotrack.geocode import AddressCache, short_address
from pygeotrack.models._base import utcnow
from pygeotrack.models.device import DeviceRecord
from pygeotrack.state.runtime import GeofenceEvent

_logger = logging.getLogger(__name__)

ADDRESS_UNAVAILABLE = "Address unavailable"

_GEOFENCE_TITLE = "🚨 Geofence Alert"
_INACTIVE_TITLE = "⚠️ Device Inactive"
_ACTIVE_TITLE = "✅ Device Active"

_GEOFENCE_EVENT_TEXT: dict[GeofenceEvent, str] = {
    GeofenceEvent.ENTER: "Enter geofence",
    GeofenceEvent.EXIT: "Exit geofence",
}


class Notifier(Protocol):
    async def send_message(self, chat_id: str, text: str) -> Any: ...


def map_link(lat: float, lng: float) -> str:
    return MAP_LINK_TEMPLATE.format(lat=lat, lng=lng)


def format_alert(
    *,
    title: str,
    device_label: str,
    at: datetime,
    event: str | None = None,
    lat: float | None = None,
    lng: float | None = None,
    address: str | None = None,
    stop_terms: Collection[str] = (),
) -> str:
    """Build HTML alert text for the notification channel.

    Coordinates, address and map link are included only when a position is
    known.
    """
    lines = [title, f"Device: {html.escape(device_label)}"]
    if event:
        lines.append(f"Event: {html.escape(event)}")
    if lat is not None and lng is not None:
        short = html.escape(short_address(address, stop_terms=stop_terms)) if address else ADDRESS_UNAVAILABLE
        lines.append(f"Coord: {lat:.6f}, {lng:.6f}")
        lines.append(f"Address: {short}")
        lines.append(f'<a href="{html.escape(map_link(lat, lng))}">Open in Google Maps</a>')
    lines.append(at.isoformat())
    return "\n".join(lines)


class AlertDispatcher:
    """Format and deliver alerts through a notification channel.

    Parameters
    ----------
    notifier : Notifier or None
        Channel client, e.g. :class:`pygeotrack._telegram.TelegramClient`.
    chat_id : str or None
        Destination. Without it (or without a notifier) alerts are logged
        and skipped.
    address_cache : AddressCache or None
        Reverse-geocoding enrichment; ``None`` disables it.
    tasks : BackgroundTasks
        Runner for detached deliveries.
    timeout : float
        Bound for the address lookup and, separately, for the send.
    """

    def __init__(
        self,
        notifier: Notifier | None,
        chat_id: str | None,
        *,
        tasks: BackgroundTasks,
        address_cache: AddressCache | None = None,
        timeout: float = 10.0,
        stop_terms: Collection[str] = (),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._notifier = notifier
        self._chat_id = chat_id
        self._tasks = tasks
        self._address_cache = address_cache
        self._timeout = timeout
        self._stop_terms = stop_terms
        self._clock = clock

    async def notify(self, text: str) -> bool:
        """Send *text*; return ``True`` when the channel accepted it."""
        if self._notifier is None or not self._chat_id:
            _logger.warning("Alert channel not configured; skipping alert")
            return False
        try:
            await asyncio.wait_for(self._notifier.send_message(self._chat_id, text), self._timeout)
        except NotificationNotConfiguredError as exc:
            _logger.warning("Alert channel not configured; skipping alert: %s", exc)
            return False
        except NotificationError as exc:
            _logger.error("Alert delivery failed: %s", exc)
            return False
        except TimeoutError:
            _logger.error("Alert delivery timed out after %ss", self._timeout)
            return False
        except Exception:
            _logger.exception("Alert delivery failed")
            return False
        _logger.info("Alert sent")
        return True

    async def _address(self, lat: float, lng: float) -> str | None:
        if self._address_cache is None:
            return None
        try:
            return await asyncio.wait_for(self._address_cache.lookup(lat, lng), self._timeout)
        except TimeoutError:
            _logger.warning("Address lookup timed out after %ss", self._timeout)
            return None

    async def send_geofence_alert(self, device: DeviceRecord, event: GeofenceEvent, lat: float, lng: float) -> bool:
        address = await self._address(lat, lng)
        text = format_alert(
            title=_GEOFENCE_TITLE,
            device_label=device.label,
            event=_GEOFENCE_EVENT_TEXT[event],
            lat=lat,
            lng=lng,
            address=address,
            at=self._clock(),
            stop_terms=self._stop_terms,
        )
        return await self.notify(text)

    async def send_status_alert(
        self,
        device_key: str,
        device: DeviceRecord | None,
        *,
        inactive: bool,
        at: datetime,
    ) -> bool:
        """Inactive / active-again alert, with the last known position if any."""
        location = device.current_location if device is not None else None
        lat = location.latitude if location is not None else None
        lng = location.longitude if location is not None else None
        address = await self._address(lat, lng) if lat is not None and lng is not None else None
        text = format_alert(
            title=_INACTIVE_TITLE if inactive else _ACTIVE_TITLE,
            device_label=device.label if device is not None else device_key,
            lat=lat,
            lng=lng,
            address=address,
            at=at,
            stop_terms=self._stop_terms,
        )
        return await self.notify(text)

    def dispatch_geofence(self, device: DeviceRecord, event: GeofenceEvent, lat: float, lng: float) -> None:
        """Fire-and-forget :meth:`send_geofence_alert`."""
        self._tasks.spawn(
            self.send_geofence_alert(device, event, lat, lng),
            name=f"geofence-alert:{device.device_key}:{event}",
            timeout=self.task_timeout,
        )

    @property
    def task_timeout(self) -> float:
        """Upper bound for one detached alert task."""
        # Address lookup and send are bounded separately.
        return self._timeout * 2
