"""
Transaction - Isolated batch of mutations committed as one unit.
"""

import inspect
import logging
from collections.abc import Callable
from typing import Any

from treedb.engine.writer import TreeWriter
from treedb.models.node import ABSENT
from treedb.models.tree import DocumentTree

logger = logging.getLogger(__name__)


class Transaction(TreeWriter):
    """
    Handle passed to transaction bodies.

    Works on a private clone of the tree, its expiry table and its index.
    Nothing done through the handle is visible to the store until the
    body returns. Hooks and events do not fire inside a transaction.

    get() returns None for missing keys, like Store.get().
    """

    def get(self, key: str) -> Any:
        value = super().get(key)
        return None if value is ABSENT else value

    def set(self, key: str, value: Any, ttl_ms: int | float | None = None) -> Any:
        super().set(key, value, ttl_ms=ttl_ms)
        return value


class TransactionManager:
    """
    Runs a transaction body against a workspace and commits or discards it.

    Must be called from inside a serializer unit.
    """

    def __init__(self, writer: TreeWriter) -> None:
        """
        Initialize the manager.

        Args:
            writer: Writer bound to the live tree.
        """
        self._live = writer

    async def run(self, fn: Callable[[Transaction], Any]) -> Any:
        """
        Execute fn against a clone of the live tree.

        On success the clone's data and expiry table replace the live ones
        and the index is rebuilt. On failure the clone is dropped, so the
        live tree, expiry table and index are all left as they were.

        Returns:
            Whatever fn returns.
        """
        live: DocumentTree = self._live.tree
        workspace = Transaction(live.clone(), schema=self._live.schema, clock=self._live.clock)

        try:
            result = fn(workspace)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.debug(f"Transaction rolled back: {e}")
            raise

        live.replace(workspace.tree.data, workspace.tree.expires)
        return result
