"""Per-worker spacing of scorer call starts.

The PageSpeed Insights quota is counted per API key, and a burst of calls at
the start of every iteration trips it quickly.  :class:`CallSpacer` makes
callers queue up behind an :class:`asyncio.Lock` so that two consecutive call
*starts* inside one worker process are at least ``min_interval`` seconds
apart.  Calls still overlap in flight; only their start times are spaced.

There is no cross-process coordination.  Several concurrent runner
invocations each keep their own spacing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class CallSpacer:
    """Enforce a minimum interval between successive :meth:`wait` returns.

    Args:
        min_interval: Seconds between two call starts.  ``0`` disables
            spacing.
        clock: Monotonic clock, injectable for tests.
        sleep: Coroutine used to wait, injectable for tests.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError(f"min_interval must be >= 0, got {min_interval}")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_start: float | None = None

    async def wait(self) -> None:
        """Block until the caller is allowed to start its call."""
        if self.min_interval == 0:
            return
        async with self._lock:
            now = self._clock()
            if self._last_start is not None:
                delay = self._last_start + self.min_interval - now
                if delay > 0:
                    logger.debug("scorer: spacing next call by %.3fs", delay)
                    await self._sleep(delay)
                    now = self._clock()
            self._last_start = now
