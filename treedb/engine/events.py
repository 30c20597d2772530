"""
EventDispatcher - Pre/post hooks and change notifications.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from treedb.models.exceptions import HookError

logger = logging.getLogger(__name__)

HOOK_STAGES = ("pre", "post")


class EventDispatcher:
    """
    Registry of hooks and event listeners.

    Hooks run in registration order inside the operation and may be
    sync or async; a failing hook aborts the operation with HookError.
    Listeners are fire-and-forget: they run after the operation has
    committed in memory, and a failing listener is logged, never raised.
    An async listener is scheduled as a task on the running loop and is
    not awaited by the operation that emitted the event.
    """

    def __init__(self) -> None:
        self._hooks: dict[str, dict[str, list[Callable]]] = {stage: {} for stage in HOOK_STAGES}
        self._listeners: dict[str, list[Callable]] = {}
        self._pending: set[asyncio.Future] = set()

    def add_hook(self, stage: str, action: str, fn: Callable) -> None:
        if stage not in HOOK_STAGES:
            raise ValueError(f"Unknown hook stage: {stage}")
        self._hooks[stage].setdefault(action, []).append(fn)

    async def run_hooks(self, stage: str, action: str, payload: dict[str, Any]) -> None:
        """
        Run every hook registered for (stage, action) in order.

        Raises:
            HookError: Wrapping the first hook exception.
        """
        for hook in list(self._hooks[stage].get(action, ())):
            try:
                result = hook(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                raise HookError(stage, action) from e

    def on(self, event: str, listener: Callable) -> Callable[[], None]:
        """Subscribe a listener. Returns a callable that unsubscribes it."""
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: Callable) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        """Emit an event, followed by the catch-all "change" event."""
        self._emit(event, payload)
        self._emit("change", {"type": event, **payload})

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                logger.warning(f"Listener for '{event}' failed: {e}")

    def _schedule(self, event: str, awaitable: Any) -> None:
        future = asyncio.ensure_future(awaitable)
        self._pending.add(future)

        def done(f: asyncio.Future) -> None:
            self._pending.discard(f)
            if not f.cancelled() and f.exception() is not None:
                logger.warning(f"Listener for '{event}' failed: {f.exception()}")

        future.add_done_callback(done)
