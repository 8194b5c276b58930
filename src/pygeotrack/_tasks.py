"""Detached background work with bounded runtime and a logging error sink."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

_logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Spawn fire-and-forget coroutines without losing track of them.

    Strong references are kept until each task finishes (the event loop
    only holds weak ones). Failures and timeouts are logged, never raised
    to whoever spawned the work.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        name: str,
        timeout: float | None = None,
    ) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(self._run(coro, name, timeout), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _run(coro: Coroutine[Any, Any, Any], name: str, timeout: float | None) -> None:
        try:
            if timeout is None:
                await coro
            else:
                await asyncio.wait_for(coro, timeout)
        except TimeoutError:
            _logger.warning("Background task %s timed out after %ss", name, timeout)
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.exception("Background task %s failed", name)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding tasks, including ones spawned while waiting."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            done, _pending = await asyncio.wait(set(self._tasks), timeout=remaining)
            if not done:
                return

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
