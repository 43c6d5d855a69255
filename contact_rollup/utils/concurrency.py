"""
Bounded-concurrency executor for async work.

Runs a batch of independent coroutine factories with at most ``limit`` of
them in flight, and collects a settled outcome per task:
- Results come back in submission order, not completion order
- A failing task never cancels its siblings
- Cancellation of the batch itself still propagates
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

T = TypeVar("T")

TaskFactory = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class Settled(Generic[T]):
    """Outcome of one task: either a value or the exception it raised."""

    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BoundedExecutor:
    """
    Run async tasks with a ceiling on how many are in flight at once.

    Tasks are zero-argument callables returning an awaitable, so nothing
    starts before a worker slot picks it up.

    Usage:
        executor = BoundedExecutor(limit=4)
        outcomes = await executor.run([lambda c=c: upsert(c) for c in contacts])
        failures = [o.error for o in outcomes if not o.ok]
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        self.limit = limit

    async def run(self, tasks: Sequence[TaskFactory[T]]) -> list[Settled[T]]:
        """
        Execute every task and return one Settled per task, in input order.

        Args:
            tasks: Zero-argument callables producing awaitables

        Returns:
            List of Settled outcomes aligned with ``tasks``
        """
        results: list[Optional[Settled[T]]] = [None] * len(tasks)
        if not tasks:
            return []

        next_index = 0

        async def worker() -> None:
            nonlocal next_index
            while next_index < len(tasks):
                index = next_index
                next_index += 1
                try:
                    value = await tasks[index]()
                except Exception as e:
                    results[index] = Settled(error=e)
                else:
                    results[index] = Settled(value=value)

        worker_count = min(self.limit, len(tasks))
        await asyncio.gather(*(worker() for _ in range(worker_count)))

        return [r if r is not None else Settled() for r in results]
