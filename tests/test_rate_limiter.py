# =============================================================================
# Unit Tests — Start-Spacing Rate Limiter
# =============================================================================

import asyncio
import time

import pytest

from earnings_qa.services.rate_limiter import StartSpacingLimiter

# asyncio timers may fire up to one clock tick early.
_TOLERANCE = 0.01


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class TestStartSpacingLimiter:

    def test_negative_interval_rejected(self):
        with pytest.raises(ValueError):
            StartSpacingLimiter(-0.1)

    def test_first_acquire_does_not_wait(self):
        limiter = StartSpacingLimiter(5.0)
        start = time.monotonic()
        _run(limiter.acquire())
        assert time.monotonic() - start < 1.0

    def test_concurrent_starts_are_spaced(self):
        limiter = StartSpacingLimiter(0.05)

        async def main():
            return await asyncio.gather(*(limiter.acquire() for _ in range(4)))

        starts = sorted(_run(main()))
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(gap >= 0.05 - _TOLERANCE for gap in gaps)

    def test_zero_interval_admits_immediately(self):
        limiter = StartSpacingLimiter(0)

        async def main():
            return await asyncio.gather(*(limiter.acquire() for _ in range(10)))

        start = time.monotonic()
        _run(main())
        assert time.monotonic() - start < 0.5

    def test_operations_overlap_in_flight(self):
        # Spacing applies to starts only; slow operations still run together.
        limiter = StartSpacingLimiter(0.02)

        async def operation():
            await limiter.acquire()
            await asyncio.sleep(0.2)

        async def main():
            await asyncio.gather(*(operation() for _ in range(3)))

        start = time.monotonic()
        _run(main())
        assert time.monotonic() - start < 0.45
