"""
DocumentTree - In-memory hierarchical store with expiry table and index.
"""

import copy
from typing import Any

from treedb.models.exceptions import InvalidKey
from treedb.models.index import IndexManager
from treedb.models.node import ABSENT, structurally_equal
from treedb.models.path import PathResolver, delete_child, get_child, set_child


class DocumentTree:
    """
    Root container plus the two tables kept coherent with it.

    The tree, its expiry table and its index always change together, so a
    clone of a DocumentTree is a complete, isolated workspace.

    Attributes:
        data: Root map of the tree.
        expires: Canonical key -> absolute expiry time in epoch milliseconds.
        index: Inverted index over the tree's documents.
    """

    def __init__(
        self,
        resolver: PathResolver,
        index: IndexManager,
        data: dict | None = None,
        expires: dict[str, int] | None = None,
    ) -> None:
        self.resolver = resolver
        self.index = index
        self.data: dict = data if data is not None else {}
        self.expires: dict[str, int] = expires if expires is not None else {}

    def clone(self) -> "DocumentTree":
        return DocumentTree(
            self.resolver,
            self.index.copy(),
            copy.deepcopy(self.data),
            dict(self.expires),
        )

    def replace(self, data: dict, expires: dict[str, int]) -> None:
        """Swap in new contents and rebuild the index from scratch."""
        self.data = data
        self.expires = expires
        self.index.rebuild_all(self.data)

    def get(self, segments: list[str]) -> Any:
        """Return the value at the path, or ABSENT."""
        node: Any = self.data
        for segment in segments:
            if not isinstance(node, (dict, list)):
                return ABSENT
            node = get_child(node, segment)
            if node is ABSENT:
                return ABSENT
        return node

    def set(self, segments: list[str], value: Any) -> Any:
        """
        Store a value, creating intermediate maps as needed.

        Returns:
            The previous value, or ABSENT.

        Raises:
            InvalidKey: If a segment cannot address a sequence element.
        """
        path = self.resolver.join(segments)
        replaced: list[int] = []
        target = self.resolver.navigate(self.data, segments, create=True, replaced=replaced)
        if target is None:
            raise InvalidKey(path)
        container, last = target

        previous = get_child(container, last)
        if not set_child(container, last, value):
            raise InvalidKey(path)

        # A scalar turned into a map loses its TTL and, if it was an
        # indexed field, its text in the enclosing document
        for depth in replaced:
            intermediate = self.resolver.join(segments[:depth])
            self.expires.pop(intermediate, None)
            self._reindex_parent(intermediate, segments[depth - 1])

        self._drop_nested_expiry(path)
        if not structurally_equal(previous, value):
            self.index.update_tree(path, value)
            self._reindex_parent(path, last)
        return previous

    def delete(self, segments: list[str]) -> bool:
        """
        Remove the value at the path.

        Returns:
            False if nothing was stored there.
        """
        path = self.resolver.join(segments)
        target = self.resolver.navigate(self.data, segments, create=False)
        if target is None:
            return False
        container, last = target
        if not delete_child(container, last):
            return False

        self.expires.pop(path, None)
        self._drop_nested_expiry(path)
        if isinstance(container, list):
            # Later siblings shifted down, so their paths changed
            parent = self.resolver.parent(path)
            self._shift_list_expiry(parent, int(last))
            self.index.update_tree(parent, container)
        else:
            self.index.remove_tree(path)
            self._reindex_parent(path, last)
        return True

    def clear(self) -> None:
        self.data = {}
        self.expires = {}
        self.index.clear()

    def _reindex_parent(self, path: str, last: str) -> None:
        # The parent document's own tokens change when an indexed field is written
        if last not in self.index.fields:
            return
        parent = self.resolver.parent(path)
        if parent is None:
            return
        parent_value = self.get(self.resolver.resolve(parent)) if parent else self.data
        self.index.update(parent, parent_value)

    def _drop_nested_expiry(self, path: str) -> None:
        prefix = path + self.resolver.separator
        for key in [k for k in self.expires if k.startswith(prefix)]:
            del self.expires[key]

    def _shift_list_expiry(self, list_path: str, removed: int) -> None:
        """Move expiry entries of elements after `removed` down by one index."""
        prefix = list_path + self.resolver.separator
        shifted: dict[str, int] = {}
        for key in [k for k in self.expires if k.startswith(prefix)]:
            index, sep, rest = key[len(prefix):].partition(self.resolver.separator)
            if not index.isdigit() or int(index) <= removed:
                continue
            shifted[f"{prefix}{int(index) - 1}{sep}{rest}"] = self.expires.pop(key)
        self.expires.update(shifted)

    # Expiry table

    def set_expiry(self, path: str, expires_at: int | None) -> None:
        if expires_at is None:
            self.expires.pop(path, None)
        else:
            self.expires[path] = expires_at

    def is_expired(self, path: str, now_ms: int) -> bool:
        expires_at = self.expires.get(path)
        return isinstance(expires_at, (int, float)) and now_ms >= expires_at

    def remaining_ms(self, path: str, now_ms: int) -> int:
        """Milliseconds until expiry, or -1 when no expiry is set."""
        expires_at = self.expires.get(path)
        if not isinstance(expires_at, (int, float)):
            return -1
        return max(0, int(expires_at - now_ms))

    def sweep_expired(self, now_ms: int) -> list[str]:
        """
        Physically remove every expired entry.

        Keys are processed deepest and highest list index first, so deleting
        a list element never shifts an expired sibling that is still pending.

        Returns:
            Canonical keys whose values were removed from the tree.
        """
        expired = sorted(
            (k for k in self.expires if self.is_expired(k, now_ms)),
            key=self._sweep_order,
            reverse=True,
        )
        removed = []
        for key in expired:
            if self.expires.pop(key, None) is None:
                continue
            if self.delete(self.resolver.resolve(key)):
                removed.append(key)
        return removed

    def _sweep_order(self, key: str) -> list[tuple[int, int, str]]:
        # List indices compare numerically so "tags.10" follows "tags.9"
        return [
            (1, int(s), "") if s.isdigit() else (0, 0, s)
            for s in key.split(self.resolver.separator)
        ]
