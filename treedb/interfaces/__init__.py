"""
Abstract base classes for pluggable store components.
"""

from treedb.interfaces.codec import Codec

__all__ = ["Codec"]
