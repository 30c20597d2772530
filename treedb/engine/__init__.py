"""
Store engine: serialization, persistence, queries and transactions.
"""

from treedb.engine.store import Store
from treedb.engine.transaction import Transaction

__all__ = ["Store", "Transaction"]
