"""Clock sources for the polling scheduler (milliseconds, monotonic)."""

import asyncio
import time


class SystemClock:
    """Real monotonic time."""

    def now(self) -> float:
        return time.monotonic() * 1000.0

    async def sleep(self, ms: float) -> None:
        await asyncio.sleep(ms / 1000.0)


class ManualClock:
    """Simulated time that only moves when told to.

    ``sleep`` fast-forwards instead of waiting, so the engine loop can also
    be driven step by step.
    """

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)

    def now(self) -> float:
        return self._now

    def advance(self, ms: float) -> float:
        self._now += ms
        return self._now

    async def sleep(self, ms: float) -> None:
        self.advance(ms)
        await asyncio.sleep(0)
