"""
TaskSerializer - Single-flight FIFO execution of store operations.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from treedb.models.exceptions import ReentrantCallError

T = TypeVar("T")


class TaskSerializer:
    """
    Runs units of work one at a time in submission order.

    A unit holds the lock across every suspension point until it
    completes, so no other unit observes a half-applied operation.
    asyncio.Lock wakes waiters in FIFO order and never lets a newcomer
    overtake a queued waiter.

    Not reentrant: a unit that submits another unit from its own task
    gets a ReentrantCallError instead of a deadlock.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task | None = None
        self._completed: int = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def completed(self) -> int:
        """Number of units that have finished, successfully or not."""
        return self._completed

    async def run(self, unit: Callable[[], Awaitable[T]]) -> T:
        """
        Queue a unit and wait for its result.

        Args:
            unit: Zero-argument coroutine function.

        Returns:
            Whatever the unit returns. Exceptions propagate to this caller
            only; the queue moves on to the next unit regardless.

        Raises:
            ReentrantCallError: If called from inside a running unit.
        """
        current = asyncio.current_task()
        if current is not None and current is self._owner:
            raise ReentrantCallError(
                "Store operation submitted from inside another operation; "
                "this would deadlock the store"
            )

        async with self._lock:
            self._owner = current
            try:
                return await unit()
            finally:
                self._owner = None
                self._completed += 1
