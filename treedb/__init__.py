"""
Embedded hierarchical document store.

This package provides an in-memory key-value tree mirrored to one file:
- set(key, value) / get(key) / delete(key) on dotted paths
- TTL expiry per key
- query(prefix, filter, options) - Mongo-style filters over children
- search(text) - inverted index over text fields
- transaction(fn) - isolated batch, committed or rolled back as a unit
- Debounced atomic saves in json, yaml, toml or msgpack
"""

from treedb.engine.store import Store
from treedb.engine.transaction import Transaction
from treedb.models.exceptions import (
    HookError,
    InvalidFilter,
    InvalidKey,
    IOFailure,
    ReentrantCallError,
    SchemaViolation,
    StoreError,
    UnknownOperator,
    UnsupportedFormat,
)

__all__ = [
    "Store",
    "Transaction",
    "StoreError",
    "InvalidKey",
    "SchemaViolation",
    "InvalidFilter",
    "UnknownOperator",
    "UnsupportedFormat",
    "IOFailure",
    "HookError",
    "ReentrantCallError",
]
