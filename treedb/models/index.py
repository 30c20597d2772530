"""
IndexManager - Inverted index over text fields of tree documents.
"""

from collections.abc import Iterable
from typing import Any

from treedb.models.path import PathResolver


def tokenize(text: str) -> list[str]:
    """Lowercase and split on whitespace, dropping empties."""
    return text.lower().split()


class IndexManager:
    """
    Maintains token -> set of document paths.

    Every container in the tree is a document addressed by its canonical
    path; its configured fields that hold text are tokenized into the index.
    Lookups use AND semantics with no ranking.
    """

    def __init__(self, fields: Iterable[str], resolver: PathResolver) -> None:
        """
        Initialize the index.

        Args:
            fields: Names of the text fields to index.
            resolver: Resolver used to build child and parent paths.
        """
        self.fields = tuple(fields)
        self._resolver = resolver
        self._postings: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._postings)

    def tokens(self) -> dict[str, set[str]]:
        """Return a copy of the token table."""
        return {token: set(paths) for token, paths in self._postings.items()}

    def copy(self) -> "IndexManager":
        clone = IndexManager(self.fields, self._resolver)
        clone._postings = self.tokens()
        return clone

    def clear(self) -> None:
        self._postings.clear()

    def index_document(self, path: str, value: Any) -> None:
        """Add path to the posting set of every token of its indexed fields."""
        if not isinstance(value, dict):
            return
        for field in self.fields:
            text = value.get(field)
            if not isinstance(text, str):
                continue
            for token in tokenize(text):
                self._postings.setdefault(token, set()).add(path)

    def remove_document(self, path: str) -> None:
        """Remove path from every posting set, dropping emptied tokens."""
        self._discard(lambda p: p == path)

    def remove_tree(self, path: str) -> None:
        """Remove path and every path beneath it."""
        self._discard(lambda p: self._resolver.is_within(p, path))

    def _discard(self, predicate) -> None:
        # O(distinct tokens); acceptable since full rebuilds happen on load/import
        for token in list(self._postings):
            paths = self._postings[token]
            stale = {p for p in paths if predicate(p)}
            if not stale:
                continue
            paths -= stale
            if not paths:
                del self._postings[token]

    def update(self, path: str, value: Any) -> None:
        """Re-index a single document. Old tokens are always removed first."""
        self.remove_document(path)
        self.index_document(path, value)

    def update_tree(self, path: str, value: Any) -> None:
        """Re-index a document and all documents nested inside it."""
        self.remove_tree(path)
        self._index_recursive(path, value)

    def rebuild_all(self, root: Any) -> None:
        """Clear the table and index every container of the tree, root included."""
        self.clear()
        self._index_recursive("", root)

    def _index_recursive(self, path: str, value: Any) -> None:
        if isinstance(value, dict):
            self.index_document(path, value)
            children = value.items()
        elif isinstance(value, list):
            children = ((str(i), item) for i, item in enumerate(value))
        else:
            return

        for segment, child in children:
            self._index_recursive(self._resolver.child(path, segment), child)

    def search(self, query: str) -> set[str]:
        """
        Return the paths containing every token of the query.

        Returns:
            Set of paths. Empty when the query has no tokens or any
            token has no postings.
        """
        words = tokenize(query)
        if not words:
            return set()

        results: set[str] | None = None
        for word in words:
            postings = self._postings.get(word)
            if not postings:
                return set()
            results = set(postings) if results is None else results & postings
            if not results:
                return set()
        return results
