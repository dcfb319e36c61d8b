"""Hand-controlled fetchers for driving the sync engine step by step."""

import asyncio
from typing import Any, List


async def pump(rounds: int = 5) -> None:
    """Let scheduled tasks run without advancing any clock."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ControlledFetcher:
    """Every call parks on a future the test resolves by index."""

    def __init__(self):
        self.calls: List[asyncio.Future] = []

    async def __call__(self) -> Any:
        future = asyncio.get_running_loop().create_future()
        self.calls.append(future)
        return await future

    def resolve(self, index: int, value: Any) -> None:
        self.calls[index].set_result(value)

    def fail(self, index: int, error: Exception) -> None:
        self.calls[index].set_exception(error)


class ScriptedFetcher:
    """Returns (or raises) the scripted outcomes in order, repeating the last."""

    def __init__(self, *outcomes: Any):
        self.outcomes = list(outcomes)
        self.count = 0

    async def __call__(self) -> Any:
        outcome = self.outcomes[min(self.count, len(self.outcomes) - 1)]
        self.count += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
