"""Owned background task that runs a synchronous callback on a fixed cadence.

Components that keep in-process state (rate limiter table, local cache store)
use this to bound memory independently of request volume. The owner starts
it from inside a running event loop and stops it on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run ``callback`` every ``interval_seconds`` until stopped."""

    def __init__(self, name: str, callback: Callable[[], object], interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        logger.info(
            "periodic.started",
            extra={"task": self.name, "interval_s": self.interval_seconds},
        )

    def stop(self) -> None:
        """Cancel the loop. Safe to call when it was never started."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("periodic.stopped", extra={"task": self.name})

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self._callback()
            except Exception as exc:
                # A failed sweep must not kill the schedule.
                logger.error(
                    "periodic.failed",
                    extra={"task": self.name, "error_type": type(exc).__name__, "error_msg": str(exc)},
                )
