# =============================================================================
# Rate Limiter — Start-Spacing Admission Control
# =============================================================================
#
# Guarantees that two admitted operations never *start* closer together than
# `min_interval` seconds. Operations may still overlap in flight; only their
# start times are spaced. This protects the upstream report site from bursts
# while keeping fetches concurrent.
#
# This is deliberately not a sliding window: there is no per-window quota,
# only a minimum gap between consecutive starts.
#
# State is process-local (one lock, one timestamp); nothing is shared across
# worker processes.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class StartSpacingLimiter:
    """
    Admission limiter enforcing a minimum spacing between starts.

    Usage:
        limiter = StartSpacingLimiter(0.5)
        await limiter.acquire()   # returns when this caller may start
    """

    def __init__(self, min_interval: float) -> None:
        if min_interval < 0:
            raise ValueError(f"min_interval must be >= 0, got {min_interval}")
        self.min_interval = min_interval
        self._lock = asyncio.Lock()
        self._last_start: float | None = None

    async def acquire(self) -> float:
        """
        Wait for an admission slot.

        Returns:
            The monotonic timestamp at which the caller was admitted.
        """
        async with self._lock:
            now = time.monotonic()
            if self._last_start is not None and self.min_interval > 0:
                wait = self._last_start + self.min_interval - now
                if wait > 0:
                    logger.debug("Rate limiter: waiting %.3fs", wait)
                    await asyncio.sleep(wait)
                    now = time.monotonic()
            self._last_start = now
            return now
