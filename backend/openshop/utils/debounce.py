"""Trailing-edge debouncer for async callbacks.

Each trigger() restarts the quiet period; the callback runs once the
period elapses with no further triggers.  A trigger that arrives while
the callback is already running does not interrupt it: the newer call
waits for the running one and then runs on its own, so at most one
callback is ever in flight.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    def __init__(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "debounce",
    ):
        self.delay = delay
        self._callback = callback
        self._name = name
        self._timer: asyncio.Task | None = None     # still in its quiet period
        self._inflight: asyncio.Task | None = None  # past the quiet period
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> bool:
        return self._timer is not None or self._inflight is not None

    def trigger(self) -> None:
        """(Re)start the quiet period."""
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.create_task(self._wait_then_fire(), name=self._name)

    async def _wait_then_fire(self) -> None:
        await asyncio.sleep(self.delay)
        me = asyncio.current_task()
        if self._timer is me:
            self._timer = None
        self._inflight = me
        try:
            await self._fire()
        finally:
            if self._inflight is me:
                self._inflight = None

    async def _fire(self) -> None:
        async with self._lock:
            try:
                await self._callback()
            except Exception:
                # Callbacks report their own failures; keep the loop alive
                logger.exception(f"{self._name}: callback failed")

    async def flush(self) -> None:
        """Run the scheduled callback now instead of waiting."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            await self._fire()
        elif self._inflight is not None:
            await self._inflight

    def cancel(self) -> None:
        """Drop a scheduled callback.  One already running is left alone."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
