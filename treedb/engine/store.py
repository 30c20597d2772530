"""
Store - Main document store API.
"""

import asyncio
import copy
import json
import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from treedb.codecs import get_codec
from treedb.engine import query as query_matcher
from treedb.engine.events import EventDispatcher
from treedb.engine.initializer import StoreInitializer
from treedb.engine.persistence import PersistenceEngine
from treedb.engine.serializer import TaskSerializer
from treedb.engine.transaction import Transaction, TransactionManager
from treedb.engine.writer import TreeWriter, now_ms
from treedb.models.exceptions import InvalidFilter, IOFailure
from treedb.models.index import IndexManager
from treedb.models.node import ABSENT
from treedb.models.path import PathResolver
from treedb.models.tree import DocumentTree

logger = logging.getLogger(__name__)

# Allowed schema field types
_SCHEMA_TYPES = (str, int, float, bool)

BACKUP_VERSION = 1


class Store:
    """
    Embedded hierarchical document store mirrored to a single file.

    Provides:
    - set/get/has/delete on separator-delimited paths ("users.1.name")
    - TTLs per key, swept lazily on reads
    - push/pull and numeric add/subtract/increment/decrement helpers
    - query(): filter, sort, skip and limit over a container's children
    - search(): token AND-search over configured text fields
    - transaction(): isolated batch committed or discarded as one unit
    - backup/restore, export/import_data

    Architecture:
    - Every operation runs as one unit in a FIFO TaskSerializer
    - Mutations keep the tree, expiry table and inverted index coherent
    - A debounced PersistenceEngine rewrites the whole file after bursts
    """

    DEFAULT_NAME = "treedb"
    DEFAULT_FORMAT = "json"
    DEFAULT_SEPARATOR = "."
    DEFAULT_INDEX_FIELDS = ("title", "description")

    def __init__(
        self,
        name: str = DEFAULT_NAME,
        directory: str | None = None,
        format: str = DEFAULT_FORMAT,
        separator: str = DEFAULT_SEPARATOR,
        auto_file: bool = True,
        debounce_ms: int = PersistenceEngine.DEFAULT_DEBOUNCE_MS,
        atomic: bool = True,
        schema: dict[str, type] | None = None,
        index_fields: tuple[str, ...] | list[str] = DEFAULT_INDEX_FIELDS,
        json_indent: int | None = 2,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Initialize the store and load any persisted state.

        Args:
            name: Base name of the data and metadata files.
            directory: Directory for the files (default: current directory).
            format: One of "json", "yaml", "toml", "binary".
            separator: Path separator inside keys.
            auto_file: Load at construction and save after mutations.
            debounce_ms: Quiescence delay before a save, in milliseconds.
            atomic: Write through temp file + rename.
            schema: Optional field -> type (str, int/float, bool) checks
                    applied to map values on write.
            index_fields: Text fields tokenized into the search index.
            json_indent: Indentation of the JSON data file.
            clock: Returns the current time in epoch milliseconds.

        Raises:
            UnsupportedFormat: If format is unknown.
            ValueError: If any other argument is invalid.
        """
        if not name or not name.strip():
            raise ValueError("name cannot be empty")
        if debounce_ms < 0:
            raise ValueError(f"debounce_ms must be >= 0, got {debounce_ms}")
        if isinstance(index_fields, str):
            raise ValueError("index_fields must be a sequence of field names")
        if schema is not None:
            for field, expected in schema.items():
                if expected not in _SCHEMA_TYPES:
                    raise ValueError(f"Unsupported schema type for {field}: {expected!r}")

        codec = get_codec(format, json_indent=json_indent)
        self._codec = codec

        self.name = name
        self.format = format
        self.directory = os.path.abspath(directory or os.getcwd())
        self.data_path = os.path.join(self.directory, f"{name}.{codec.extension}")
        self.meta_path = os.path.join(self.directory, f"{name}.meta.json")
        self.auto_file = auto_file

        resolver = PathResolver(separator)
        self._tree = DocumentTree(resolver, IndexManager(index_fields, resolver))
        self._writer = TreeWriter(self._tree, schema=schema, clock=clock)
        self._serializer = TaskSerializer()
        self._events = EventDispatcher()
        self._transactions = TransactionManager(self._writer)
        self._persistence = PersistenceEngine(
            data_path=self.data_path,
            meta_path=self.meta_path,
            codec=codec,
            serializer=self._serializer,
            snapshot=lambda: (self._tree.data, self._tree.expires),
            debounce_ms=debounce_ms,
            atomic=atomic,
            enabled=auto_file,
        )

        if auto_file:
            self._load()

    @classmethod
    async def create(cls, **kwargs: Any) -> "Store":
        """
        Async factory: construct, load, and arm a save if loading changed state.

        Args:
            **kwargs: Same as __init__.
        """
        store = cls(**kwargs)
        if store._persistence.dirty:
            store._persistence.schedule()
        return store

    def _load(self) -> None:
        initializer = StoreInitializer(self.data_path, self.meta_path, self._codec)
        data, expires = initializer.recover()
        self._tree.replace(data, expires)
        if self._writer.sweep():
            self._persistence.schedule()
        self._writer.drain_changes()

    @property
    def separator(self) -> str:
        return self._tree.resolver.separator

    @property
    def save_count(self) -> int:
        """Number of physical saves performed so far."""
        return self._persistence.save_count

    # Hooks and events

    def pre(self, action: str, fn: Callable) -> None:
        """Register a hook that runs before `action`; failing it aborts the action."""
        self._events.add_hook("pre", action, fn)

    def post(self, action: str, fn: Callable) -> None:
        """Register a hook that runs after `action` has been applied."""
        self._events.add_hook("post", action, fn)

    def on(self, event: str, listener: Callable) -> Callable[[], None]:
        return self._events.on(event, listener)

    def off(self, event: str, listener: Callable) -> None:
        self._events.off(event, listener)

    # Internals

    def _commit(self, notify: bool = True) -> None:
        """Schedule a save for pending changes and emit their events."""
        changes = self._writer.drain_changes()
        if not changes:
            return
        self._persistence.schedule()
        if notify:
            for kind, payload in changes:
                self._events.notify(kind, payload)

    def _reset(self, reason: str) -> None:
        self._writer.drain_changes()
        self._persistence.schedule()
        self._events.notify("reset", {"reason": reason})

    async def _mutation(self, action: str, payload: dict[str, Any], apply: Callable[[], Any]) -> Any:
        """Run pre hooks, the mutation and post hooks as one unit."""

        async def unit() -> Any:
            await self._events.run_hooks("pre", action, payload)
            try:
                result = apply()
                await self._events.run_hooks("post", action, payload)
            except BaseException:
                # Whatever was applied stays applied and must still be saved
                self._commit(notify=False)
                raise
            self._commit()
            return result

        return await self._serializer.run(unit)

    async def _read(self, fn: Callable[[], Any]) -> Any:
        async def unit() -> Any:
            try:
                return fn()
            finally:
                self._commit()

        return await self._serializer.run(unit)

    def _canonical(self, key: str) -> str:
        resolver = self._tree.resolver
        return resolver.join(resolver.resolve(key))

    def _container(self, prefix: str) -> dict | list | None:
        self._writer.sweep()
        if not prefix:
            return self._tree.data
        node = self._writer.read(prefix)
        return node if isinstance(node, (dict, list)) else None

    def _children(self, prefix: str) -> list[tuple[str, Any]]:
        node = self._container(prefix)
        if isinstance(node, dict):
            return list(node.items())
        if isinstance(node, list):
            return [(str(i), v) for i, v in enumerate(node)]
        return []

    # Core operations

    async def set(self, key: str, value: Any, ttl_ms: int | float | None = None) -> Any:
        """
        Store value at key, creating intermediate maps as needed.

        Args:
            key: Separator-delimited path.
            value: Map, list or scalar.
            ttl_ms: Expire the key after this many milliseconds.
                    A missing or non-positive TTL clears any existing one.

        Returns:
            The stored value.
        """
        path = self._canonical(key)
        self._writer.validate(value)

        def apply() -> Any:
            self._writer.set(path, value, ttl_ms=ttl_ms)
            return value

        return await self._mutation("set", {"key": path, "value": value}, apply)

    async def get(self, key: str) -> Any:
        """Return a copy of the value at key, or None if it is missing or expired."""
        self._canonical(key)

        def read() -> Any:
            value = self._writer.get(key)
            return None if value is ABSENT else value

        return await self._read(read)

    async def has(self, key: str) -> bool:
        """True if key holds a value (including None)."""
        self._canonical(key)
        return await self._read(lambda: self._writer.has(key))

    async def delete(self, key: str) -> bool:
        """Delete key. Returns False if it was not present."""
        path = self._canonical(key)
        return await self._mutation("delete", {"key": path}, lambda: self._writer.delete(path))

    async def all(self) -> dict:
        """Return a copy of the whole tree."""

        def read() -> dict:
            self._writer.sweep()
            return copy.deepcopy(self._tree.data)

        return await self._read(read)

    async def delete_all(self) -> bool:
        """Empty the tree, the expiry table and the index."""

        async def unit() -> bool:
            self._tree.clear()
            self._reset("delete_all")
            return True

        return await self._serializer.run(unit)

    # Derived operations

    async def push(self, key: str, value: Any) -> list:
        """Append value to the list at key. Returns the new list."""
        path = self._canonical(key)
        return await self._mutation(
            "push", {"key": path, "value": value}, lambda: self._writer.push(path, value)
        )

    async def pull(self, key: str, value: Any) -> list:
        """Remove every element equal to value from the list at key."""
        path = self._canonical(key)
        return await self._mutation(
            "pull", {"key": path, "value": value}, lambda: self._writer.pull(path, value)
        )

    async def add(self, key: str, delta: int | float) -> int | float:
        path = self._canonical(key)
        return await self._mutation(
            "add", {"key": path, "value": delta}, lambda: self._writer.add(path, delta)
        )

    async def subtract(self, key: str, delta: int | float) -> int | float:
        path = self._canonical(key)
        return await self._mutation(
            "subtract", {"key": path, "value": delta}, lambda: self._writer.subtract(path, delta)
        )

    async def increment(self, key: str) -> int | float:
        return await self.add(key, 1)

    async def decrement(self, key: str) -> int | float:
        return await self.subtract(key, 1)

    # Listing

    async def keys(self, prefix: str = "") -> list[str]:
        return await self._read(lambda: [k for k, _ in self._children(prefix)])

    async def values(self, prefix: str = "") -> list[Any]:
        return await self._read(lambda: [copy.deepcopy(v) for _, v in self._children(prefix)])

    async def entries(self, prefix: str = "") -> list[tuple[str, Any]]:
        return await self._read(
            lambda: [(k, copy.deepcopy(v)) for k, v in self._children(prefix)]
        )

    async def find(self, prefix: str, predicate: Callable[[Any, str], bool]) -> list[tuple[str, Any]]:
        """Return (key, value) children of prefix for which predicate(value, key) is true."""

        def read() -> list[tuple[str, Any]]:
            return [
                (k, copy.deepcopy(v)) for k, v in self._children(prefix) if predicate(v, k)
            ]

        return await self._read(read)

    # Query and search

    async def query(
        self, prefix: str = "", filter: dict | None = None, options: dict | None = None
    ) -> list[dict[str, Any]]:
        """
        Filter the immediate children of the container at prefix.

        Args:
            prefix: Path of the container ("" for the root).
            filter: Filter expression, e.g. {"age": {"$gte": 18}}.
            options: Optional {"sort": {field: 1|-1}, "skip": n, "limit": n}.

        Returns:
            List of {"key", "value"} dicts.
        """
        options = options or {}
        unknown = set(options) - {"sort", "skip", "limit"}
        if unknown:
            raise InvalidFilter(f"Unknown query options: {sorted(unknown)}")

        def read() -> list[dict[str, Any]]:
            results = query_matcher.query(
                self._container(prefix),
                filter,
                sort=options.get("sort"),
                skip=options.get("skip"),
                limit=options.get("limit"),
            )
            return copy.deepcopy(results)

        return await self._read(read)

    async def search(self, text: str) -> list[str]:
        """Return the sorted paths of documents containing every word of text."""
        if not isinstance(text, str):
            raise TypeError(f"search text must be a string, got {type(text).__name__}")

        def read() -> list[str]:
            self._writer.sweep()
            return sorted(self._tree.index.search(text))

        return await self._read(read)

    # Expiry

    async def expire(self, key: str, ttl_ms: int | float | None) -> bool:
        """Set a TTL on key, or clear it when ttl_ms is not positive."""
        path = self._canonical(key)

        async def unit() -> bool:
            result = self._writer.expire(path, ttl_ms)
            self._persistence.schedule()
            return result

        return await self._serializer.run(unit)

    async def ttl(self, key: str) -> int:
        """Milliseconds until key expires, or -1 if it has no TTL."""
        path = self._canonical(key)
        return await self._read(lambda: self._writer.ttl(path))

    # Transactions

    async def transaction(self, fn: Callable[[Transaction], Any]) -> Any:
        """
        Run fn against an isolated copy of the store.

        fn receives a Transaction handle with get/has/set/delete/push/pull/
        add/subtract/increment/decrement/expire/ttl and may be sync or async.
        It must not call back into this store.

        Returns:
            fn's return value, after the changes are committed.

        Raises:
            Whatever fn raises; the store is left untouched in that case.
        """

        async def unit() -> Any:
            result = await self._transactions.run(fn)
            self._reset("transaction")
            return result

        return await self._serializer.run(unit)

    # Snapshots

    async def export(self) -> dict:
        return await self._read(lambda: copy.deepcopy(self._tree.data))

    async def import_data(self, data: dict) -> bool:
        """Replace the tree with a copy of data and clear every TTL."""
        if not isinstance(data, dict):
            raise TypeError(f"import_data() expects a dict, got {type(data).__name__}")

        async def unit() -> bool:
            self._tree.replace(copy.deepcopy(data), {})
            self._reset("import")
            return True

        return await self._serializer.run(unit)

    async def backup(self, dest_path: str) -> str:
        """
        Write {data, expires, version, createdAt} as JSON to dest_path.

        Raises:
            IOFailure: If the snapshot cannot be written.
        """

        async def unit() -> str:
            snapshot = {
                "data": self._tree.data,
                "expires": self._tree.expires,
                "version": BACKUP_VERSION,
                "createdAt": datetime.now(timezone.utc).isoformat(),
            }
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, _write_backup, dest_path, snapshot)
            logger.debug(f"Backed up {self.name} to {dest_path}")
            return dest_path

        return await self._serializer.run(unit)

    async def restore(self, src_path: str) -> bool:
        """
        Replace the tree and expiry table from a backup file.

        Raises:
            IOFailure: If the file cannot be read or is not a backup.
        """

        async def unit() -> bool:
            loop = asyncio.get_running_loop()
            data, expires = await loop.run_in_executor(None, _read_backup, src_path)
            self._tree.replace(data, expires)
            self._writer.sweep()
            self._reset("restore")
            logger.debug(f"Restored {self.name} from {src_path} ({len(data)} top-level keys)")
            return True

        return await self._serializer.run(unit)

    # Lifecycle

    async def save(self) -> None:
        """Save now, cancelling any pending debounced save."""
        self._persistence.cancel()
        await self._persistence.save()

    async def close(self) -> None:
        """Flush any pending save. Later mutations are no longer auto-saved."""
        await self._persistence.flush(close=True)

    async def __aenter__(self) -> "Store":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _write_backup(dest_path: str, snapshot: dict) -> None:
    """Sync implementation for thread pool execution."""
    tmp_path = dest_path + ".tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, dest_path)
    except (OSError, TypeError, ValueError) as e:
        raise IOFailure(dest_path, str(e)) from e


def _read_backup(src_path: str) -> tuple[dict, dict[str, int]]:
    """Sync implementation for thread pool execution."""
    try:
        with open(src_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        raise IOFailure(src_path, str(e)) from e

    if not isinstance(raw, dict):
        raise IOFailure(src_path, "backup must be a JSON object")
    data = raw.get("data") or {}
    expires = raw.get("expires") or {}
    if not isinstance(data, dict) or not isinstance(expires, dict):
        raise IOFailure(src_path, "backup 'data' and 'expires' must be objects")
    return data, {str(k): v for k, v in expires.items() if isinstance(v, (int, float))}
