"""
TreeWriter - Synchronous key-addressed operations over a DocumentTree.
"""

import copy
import time
from collections.abc import Callable
from typing import Any

from treedb.models.exceptions import SchemaViolation
from treedb.models.node import ABSENT, is_number, structurally_equal
from treedb.models.tree import DocumentTree

# Names used in schema violation messages
_TYPE_NAMES = {str: "string", int: "number", float: "number", bool: "boolean"}


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _type_ok(expected: type, value: Any) -> bool:
    if expected is bool:
        return isinstance(value, bool)
    if expected in (int, float):
        return is_number(value)
    return isinstance(value, expected)


class TreeWriter:
    """
    Applies reads and mutations to one DocumentTree.

    Every mutation goes through set() or delete(), which keep the index
    and expiry table coherent. Expired entries are swept before each read
    and reported in `changes` as ("delete", payload) records, alongside
    the records of explicit sets and deletes.

    The store wraps a writer over the live tree with serialization, hooks
    and events; a transaction hands a writer over a private clone to user
    code.
    """

    def __init__(
        self,
        tree: DocumentTree,
        schema: dict[str, type] | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.tree = tree
        self.resolver = tree.resolver
        self.schema = schema
        self.clock = clock
        self.changes: list[tuple[str, dict[str, Any]]] = []

    def drain_changes(self) -> list[tuple[str, dict[str, Any]]]:
        changes, self.changes = self.changes, []
        return changes

    def validate(self, value: Any) -> None:
        """
        Check a map's fields against the schema. Non-map values pass.

        Raises:
            SchemaViolation: On the first field with the wrong type.
        """
        if not self.schema or not isinstance(value, dict):
            return
        for field, expected in self.schema.items():
            if field in value and not _type_ok(expected, value[field]):
                raise SchemaViolation(field, _TYPE_NAMES.get(expected, expected.__name__))

    def sweep(self) -> list[str]:
        """Remove every expired entry from the tree."""
        removed = self.tree.sweep_expired(self.clock())
        for key in removed:
            self.changes.append(("delete", {"key": key, "reason": "expired"}))
        return removed

    def read(self, key: str) -> Any:
        """Return the live value at key (not a copy), or ABSENT."""
        self.sweep()
        return self.tree.get(self.resolver.resolve(key))

    def get(self, key: str) -> Any:
        """Return a copy of the value at key, or ABSENT."""
        value = self.read(key)
        return ABSENT if value is ABSENT else copy.deepcopy(value)

    def has(self, key: str) -> bool:
        return self.read(key) is not ABSENT

    def set(self, key: str, value: Any, ttl_ms: int | float | None = None) -> Any:
        """
        Store a copy of value at key and set or clear its TTL.

        Returns:
            The previous value at key, or ABSENT.
        """
        self.validate(value)
        segments = self.resolver.resolve(key)
        path = self.resolver.join(segments)

        previous = self.tree.set(segments, copy.deepcopy(value))
        if is_number(ttl_ms) and ttl_ms > 0:
            self.tree.set_expiry(path, self.clock() + int(ttl_ms))
        else:
            self.tree.set_expiry(path, None)

        self.changes.append(("set", {"key": path, "value": copy.deepcopy(value)}))
        return previous

    def delete(self, key: str) -> bool:
        """Remove key. Returns False if it was absent."""
        segments = self.resolver.resolve(key)
        path = self.resolver.join(segments)
        removed = self.tree.delete(segments)
        if removed:
            self.changes.append(("delete", {"key": path}))
        else:
            # A TTL set on a key that never held a value
            self.tree.set_expiry(path, None)
        return removed

    def push(self, key: str, value: Any) -> list:
        """Append to the list at key, starting a new list if there is none."""
        current = self.read(key)
        items = list(current) if isinstance(current, list) else []
        items.append(copy.deepcopy(value))
        self.set(key, items)
        return copy.deepcopy(items)

    def pull(self, key: str, value: Any) -> list:
        """Remove every element equal to value from the list at key."""
        current = self.read(key)
        if not isinstance(current, list):
            return []
        items = [item for item in current if not structurally_equal(item, value)]
        self.set(key, items)
        return copy.deepcopy(items)

    def add(self, key: str, delta: int | float) -> int | float:
        return self._numeric(key, delta)

    def subtract(self, key: str, delta: int | float) -> int | float:
        return self._numeric(key, delta, sign=-1)

    def increment(self, key: str) -> int | float:
        return self._numeric(key, 1)

    def decrement(self, key: str) -> int | float:
        return self._numeric(key, 1, sign=-1)

    def _numeric(self, key: str, delta: int | float, sign: int = 1) -> int | float:
        """Apply a delta; a missing or non-numeric current value counts as 0."""
        if not is_number(delta):
            raise TypeError(f"delta must be a number, got {type(delta).__name__}")
        current = self.read(key)
        base = current if is_number(current) else 0
        result = base + sign * delta
        self.set(key, result)
        return result

    def expire(self, key: str, ttl_ms: int | float | None) -> bool:
        """Set a TTL on key, or clear it when ttl_ms is not positive."""
        path = self.resolver.join(self.resolver.resolve(key))
        if is_number(ttl_ms) and ttl_ms > 0:
            self.tree.set_expiry(path, self.clock() + int(ttl_ms))
        else:
            self.tree.set_expiry(path, None)
        return True

    def ttl(self, key: str) -> int:
        """Milliseconds left before key expires, -1 if it has no TTL."""
        path = self.resolver.join(self.resolver.resolve(key))
        self.sweep()
        return self.tree.remaining_ms(path, self.clock())
