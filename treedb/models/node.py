"""
NodeKind and helpers for classifying tree values.
"""

from enum import IntEnum
from typing import Any


class NodeKind(IntEnum):
    """Kind of a node stored in the document tree."""

    MAP = 0
    SEQUENCE = 1
    STRING = 2
    NUMBER = 3
    BOOLEAN = 4
    NULL = 5


class _Absent:
    """Marker for a path that holds no value."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()

# Kinds that have a natural ordering among values of the same kind
ORDERED_KINDS = frozenset({NodeKind.NUMBER, NodeKind.STRING, NodeKind.BOOLEAN})


def kind_of(value: Any) -> NodeKind:
    """
    Classify a value into its NodeKind.

    Raises:
        TypeError: If the value cannot be stored in the tree.
    """
    # bool must be checked before int since bool is an int subclass
    if value is None:
        return NodeKind.NULL
    if isinstance(value, bool):
        return NodeKind.BOOLEAN
    if isinstance(value, (int, float)):
        return NodeKind.NUMBER
    if isinstance(value, str):
        return NodeKind.STRING
    if isinstance(value, dict):
        return NodeKind.MAP
    if isinstance(value, (list, tuple)):
        return NodeKind.SEQUENCE
    raise TypeError(f"Unsupported value type: {type(value).__name__}")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def structurally_equal(a: Any, b: Any) -> bool:
    """
    Deep, kind-aware equality.

    Unlike ==, True is not equal to 1 and a list is not equal to a tuple
    holding different kinds.
    """
    if a is ABSENT or b is ABSENT:
        return a is b

    try:
        kind_a, kind_b = kind_of(a), kind_of(b)
    except TypeError:
        return a == b

    if kind_a != kind_b:
        return False

    match kind_a:
        case NodeKind.MAP:
            if a.keys() != b.keys():
                return False
            return all(structurally_equal(a[k], b[k]) for k in a)
        case NodeKind.SEQUENCE:
            if len(a) != len(b):
                return False
            return all(structurally_equal(x, y) for x, y in zip(a, b))
        case NodeKind.NULL:
            return True
        case _:
            return a == b
