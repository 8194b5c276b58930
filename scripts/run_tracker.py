#!/usr/bin/env python3
"""Run the tracker service against an MQTT broker.

Configuration comes from ``GEOTRACK_*`` environment variables; devices are
seeded into an in-memory repository from a JSON file. Realtime events are
printed to stdout as JSON lines.

Example::

    GEOTRACK_MQTT_BROKER_URL=mqtt://localhost:1883 \\
        python scripts/run_tracker.py --devices devices.json
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pygeotrack import InMemoryRepository, TrackerConfig, TrackerService  # noqa: E402
from pygeotrack.exceptions import TrackerError  # noqa: E402
from pygeotrack.service import load_devices  # noqa: E402

_LOG = logging.getLogger("run_tracker")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Realtime GPS tracker core (MQTT ingestion, geofence and inactivity alerts).",
    )
    parser.add_argument(
        "--devices",
        type=Path,
        required=True,
        help="JSON file with a list of device records to track.",
    )
    parser.add_argument(
        "--broker",
        default=None,
        help="Broker URL; overrides GEOTRACK_MQTT_BROKER_URL.",
    )
    parser.add_argument(
        "--quiet-events",
        action="store_true",
        help="Do not print realtime events.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> None:
    overrides = {"mqtt_broker_url": args.broker} if args.broker else {}
    config = TrackerConfig.from_env(**overrides)
    repository = InMemoryRepository(load_devices(str(args.devices)))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    async with TrackerService(config, repository) as service:
        _LOG.info("Tracking %d device(s)", len(await service.list_devices()))

        async def _print_events() -> None:
            with service.broadcaster.subscribe() as events:
                async for event in events:
                    print(json.dumps({"event": event.name, **event.payload}), flush=True)

        printer = None if args.quiet_events else asyncio.create_task(_print_events())
        await stop.wait()
        _LOG.info("Shutting down")
        if printer is not None:
            printer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await printer


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(_run(args))
    except (OSError, ValueError, TrackerError) as exc:
        print(f"[tracker] Failed: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
