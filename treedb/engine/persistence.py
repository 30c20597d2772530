"""
PersistenceEngine - Debounced, crash-safe whole-file saves.
"""

import asyncio
import json
import logging
import os
import time
from collections.abc import Awaitable, Callable
from enum import IntEnum
from pathlib import Path

from treedb.engine.serializer import TaskSerializer
from treedb.interfaces.codec import Codec
from treedb.models.exceptions import IOFailure

logger = logging.getLogger(__name__)


class SaveState(IntEnum):
    """State of the save scheduler."""

    IDLE = 0  # Nothing pending
    ARMED = 1  # Timer running, save due after the quiescence delay
    SAVING = 2  # Timer fired, save queued or in progress


class SaveScheduler:
    """
    Debounce timer in front of a save callable.

    Transitions:
    - mark_dirty: IDLE -> ARMED, ARMED -> ARMED (timer restarted).
      While SAVING the timer is re-armed but the state stays SAVING.
    - timer fires: -> SAVING, a save task is spawned.
    - save task ends: -> ARMED if a new timer is running, else IDLE.
    - flush: timer cancelled, in-flight saves awaited, one final save if dirty.
    """

    def __init__(self, delay_ms: int, save: Callable[[], Awaitable[None]]) -> None:
        self._delay = delay_ms / 1000
        self._save = save
        self._state = SaveState.IDLE
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self.dirty = False

    @property
    def state(self) -> SaveState:
        return self._state

    def mark_dirty(self) -> None:
        """Record a mutation and (re)arm the timer if an event loop is running."""
        self.dirty = True
        if self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Constructed outside a loop; the first armed save or flush picks this up
            return

        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._delay, self._fire)
        if self._state == SaveState.IDLE:
            self._state = SaveState.ARMED

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._state == SaveState.ARMED:
            self._state = SaveState.IDLE

    def _fire(self) -> None:
        self._timer = None
        self._state = SaveState.SAVING
        task = asyncio.get_running_loop().create_task(self._run_save())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_save(self) -> None:
        try:
            await self._save()
        except Exception as e:
            # Nobody awaits a debounced save; the store stays dirty for the next one
            logger.error(f"Background save failed: {e}")
        finally:
            if not self._tasks - {asyncio.current_task()}:
                self._state = SaveState.ARMED if self._timer is not None else SaveState.IDLE

    async def flush(self, close: bool = False) -> None:
        """
        Cancel the timer, wait for running saves and save once more if dirty.

        Args:
            close: Stop arming timers afterwards.
        """
        self.cancel()
        if close:
            self._closed = True
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self.dirty:
            await self._save()
        self._state = SaveState.IDLE


class PersistenceEngine:
    """
    Writes the whole tree and its expiry table to disk.

    Layout:
    - <directory>/<name>.<ext>: tree encoded by the codec
    - <directory>/<name>.meta.json: expiry table as JSON

    In atomic mode each file is written to "<path>.tmp", fsynced and then
    renamed over the target. Data and metadata are renamed in two separate
    steps; a crash between them can leave them mutually inconsistent.
    """

    # Default quiescence delay before a save fires
    DEFAULT_DEBOUNCE_MS = 25

    def __init__(
        self,
        data_path: str,
        meta_path: str,
        codec: Codec,
        serializer: TaskSerializer,
        snapshot: Callable[[], tuple[dict, dict[str, int]]],
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        atomic: bool = True,
        enabled: bool = True,
    ) -> None:
        """
        Initialize the persistence engine.

        Args:
            data_path: Path of the data file.
            meta_path: Path of the expiry metadata file.
            codec: Codec used for the data file.
            serializer: Serializer every save is submitted through.
            snapshot: Returns the live (tree data, expiry table).
            debounce_ms: Quiescence delay in milliseconds.
            atomic: Write through temp file + rename.
            enabled: When False, schedule() is a no-op (in-memory store).
        """
        self.data_path = data_path
        self.meta_path = meta_path
        self._codec = codec
        self._serializer = serializer
        self._snapshot = snapshot
        self._atomic = atomic
        self._enabled = enabled
        self._scheduler = SaveScheduler(debounce_ms, self._save_pending)
        self.save_count = 0

    @property
    def state(self) -> SaveState:
        return self._scheduler.state

    @property
    def dirty(self) -> bool:
        return self._scheduler.dirty

    def schedule(self) -> None:
        """Called after every committed mutation."""
        if self._enabled:
            self._scheduler.mark_dirty()

    async def save(self) -> None:
        """Run one save through the serializer."""
        await self._serializer.run(self.save_now)

    async def _save_pending(self) -> None:
        """Debounced save; skipped when a save queued earlier already wrote the changes."""

        async def unit() -> None:
            if self._scheduler.dirty:
                await self.save_now()

        await self._serializer.run(unit)

    async def save_now(self) -> None:
        """
        Encode and write both files. Must run inside a serializer unit.

        Raises:
            IOFailure: If encoding or any filesystem step fails.
        """
        data, expires = self._snapshot()
        started = time.monotonic()

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_sync, data, dict(expires))

        self._scheduler.dirty = False
        self.save_count += 1
        logger.debug(
            f"Saved {self.data_path} in {(time.monotonic() - started) * 1000:.1f}ms"
        )

    async def flush(self, close: bool = False) -> None:
        """Write any pending changes now."""
        if self._enabled:
            await self._scheduler.flush(close=close)

    def cancel(self) -> None:
        self._scheduler.cancel()

    def _write_sync(self, data: dict, expires: dict[str, int]) -> None:
        """Sync implementation for thread pool execution."""
        try:
            data_bytes = self._codec.encode(data)
        except Exception as e:
            raise IOFailure(self.data_path, f"encoding failed: {e}") from e
        meta_bytes = json.dumps(expires, indent=2).encode("utf-8")

        try:
            Path(self.data_path).parent.mkdir(parents=True, exist_ok=True)
            if self._atomic:
                data_tmp = self.data_path + ".tmp"
                meta_tmp = self.meta_path + ".tmp"
                _write_file(data_tmp, data_bytes)
                _write_file(meta_tmp, meta_bytes)
                os.replace(data_tmp, self.data_path)
                os.replace(meta_tmp, self.meta_path)
            else:
                _write_file(self.data_path, data_bytes)
                _write_file(self.meta_path, meta_bytes)
        except OSError as e:
            raise IOFailure(self.data_path, str(e)) from e


def _write_file(path: str, body: bytes) -> None:
    """Write and push the bytes through to the disk."""
    with open(path, "wb") as f:
        f.write(body)
        f.flush()
        # Use fdatasync if available (Linux), fallback to fsync (macOS/Windows)
        _sync_data = getattr(os, "fdatasync", os.fsync)
        _sync_data(f.fileno())
