"""
PathResolver - Split keys into path segments and walk the tree.
"""

from typing import Any

from treedb.models.exceptions import InvalidKey
from treedb.models.node import ABSENT


class PathResolver:
    """
    Turns separator-delimited keys into path segments.

    Sequences are addressed with decimal indices, so "tags.0" reads the
    first element of the list stored at "tags".
    """

    def __init__(self, separator: str = ".") -> None:
        if not separator:
            raise ValueError("separator cannot be empty")
        self.separator = separator

    def resolve(self, key: Any) -> list[str]:
        """
        Split a key into its non-empty segments.

        Raises:
            InvalidKey: If the key is not a string or has no segments.
        """
        if not isinstance(key, str) or not key:
            raise InvalidKey(key)

        segments = [s for s in key.split(self.separator) if s]
        if not segments:
            raise InvalidKey(key)
        return segments

    def join(self, segments: list[str]) -> str:
        """Return the canonical key for a list of segments."""
        return self.separator.join(segments)

    def child(self, parent: str, segment: str) -> str:
        return f"{parent}{self.separator}{segment}" if parent else segment

    def parent(self, path: str) -> str | None:
        """Return the canonical parent path, "" for top-level keys, None for the root."""
        if not path:
            return None
        head, sep, _ = path.rpartition(self.separator)
        return head if sep else ""

    def is_within(self, path: str, ancestor: str) -> bool:
        """True if path equals ancestor or lies beneath it."""
        if not ancestor:
            return True
        return path == ancestor or path.startswith(ancestor + self.separator)

    def navigate(
        self,
        root: dict,
        segments: list[str],
        create: bool = False,
        replaced: list[int] | None = None,
    ) -> tuple[dict | list, str] | None:
        """
        Walk all but the last segment.

        Args:
            root: Root container of the tree.
            segments: Resolved path segments.
            create: Replace missing or scalar intermediates with new maps.
            replaced: If given, receives the depth (number of segments) of
                      every intermediate that was created or replaced.

        Returns:
            (container, last_segment), or None when the walk fails on a read.
        """
        node: dict | list = root
        for depth, segment in enumerate(segments[:-1], start=1):
            child = _child_of(node, segment)
            if not isinstance(child, (dict, list)):
                if not create:
                    return None
                child = {}
                if not _assign(node, segment, child):
                    return None
                if replaced is not None:
                    replaced.append(depth)
            node = child
        return node, segments[-1]


def _index(container: list, segment: str) -> int | None:
    if not segment.isdigit():
        return None
    idx = int(segment)
    return idx if idx < len(container) else None


def _child_of(container: dict | list, segment: str) -> Any:
    if isinstance(container, dict):
        return container.get(segment, ABSENT)
    idx = _index(container, segment)
    return ABSENT if idx is None else container[idx]


def _assign(container: dict | list, segment: str, value: Any) -> bool:
    if isinstance(container, dict):
        container[segment] = value
        return True
    if segment.isdigit():
        idx = int(segment)
        if idx < len(container):
            container[idx] = value
            return True
        if idx == len(container):
            container.append(value)
            return True
    return False


def get_child(container: dict | list, segment: str) -> Any:
    """Read a single child, ABSENT if missing."""
    return _child_of(container, segment)


def set_child(container: dict | list, segment: str, value: Any) -> bool:
    """Assign a single child. Returns False if the segment cannot address the container."""
    return _assign(container, segment, value)


def delete_child(container: dict | list, segment: str) -> bool:
    """Remove a single child. Returns False if it was absent."""
    if isinstance(container, dict):
        if segment not in container:
            return False
        del container[segment]
        return True
    idx = _index(container, segment)
    if idx is None:
        return False
    del container[idx]
    return True
