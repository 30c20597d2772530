"""
Data models for the document store.
"""

from treedb.models.index import IndexManager
from treedb.models.node import ABSENT, NodeKind, kind_of, structurally_equal
from treedb.models.path import PathResolver
from treedb.models.tree import DocumentTree

__all__ = [
    "ABSENT",
    "DocumentTree",
    "IndexManager",
    "NodeKind",
    "PathResolver",
    "kind_of",
    "structurally_equal",
]
