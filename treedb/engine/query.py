"""
QueryMatcher - Evaluate declarative filters over a container's children.
"""

import re
from functools import cmp_to_key
from typing import Any

from treedb.models.exceptions import InvalidFilter, UnknownOperator
from treedb.models.node import ABSENT, ORDERED_KINDS, kind_of, structurally_equal

LOGICAL_OPERATORS = ("$and", "$or", "$not")


def _kind(value: Any):
    # ABSENT and foreign objects have no kind
    try:
        return kind_of(value)
    except TypeError:
        return None


def _comparable(a: Any, b: Any) -> bool:
    kind_a = _kind(a)
    return kind_a in ORDERED_KINDS and kind_a == _kind(b)


def compare(a: Any, b: Any) -> int:
    """
    Three-way comparison by natural ordering.

    Values of different kinds, or of unordered kinds, compare equal.
    """
    if not _comparable(a, b):
        return 0
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def _member(value: Any, candidates: Any, operator: str) -> bool:
    if not isinstance(candidates, (list, tuple)):
        raise InvalidFilter(f"{operator} requires a list, got {type(candidates).__name__}")
    return any(structurally_equal(value, c) for c in candidates)


def _regex(value: Any, pattern: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        return re.search(pattern, value) is not None
    except (re.error, TypeError) as e:
        raise InvalidFilter(f"Invalid $regex pattern {pattern!r}: {e}") from e


def _apply_operator(operator: str, value: Any, operand: Any) -> bool:
    match operator:
        case "$eq":
            return structurally_equal(value, operand)
        case "$ne":
            return not structurally_equal(value, operand)
        case "$gt":
            return _comparable(value, operand) and value > operand
        case "$gte":
            return _comparable(value, operand) and value >= operand
        case "$lt":
            return _comparable(value, operand) and value < operand
        case "$lte":
            return _comparable(value, operand) and value <= operand
        case "$in":
            return value is not ABSENT and _member(value, operand, operator)
        case "$nin":
            return value is ABSENT or not _member(value, operand, operator)
        case "$regex":
            return _regex(value, operand)
        case _:
            raise UnknownOperator(operator)


def _sub_filters(operator: str, operand: Any) -> list:
    if not isinstance(operand, (list, tuple)):
        raise InvalidFilter(f"{operator} must be a list of filters")
    return list(operand)


def matches(document: Any, filter: Any) -> bool:
    """
    Check whether a document satisfies a filter.

    Args:
        document: The child value being tested (a map for a real match).
        filter: Mapping of field -> literal or operator object, optionally
                with $and / $or / $not combinators.

    Raises:
        InvalidFilter: If the filter is malformed.
        UnknownOperator: If an operator object uses an unknown key.
    """
    if filter is None:
        return True
    if not isinstance(filter, dict):
        raise InvalidFilter(f"Filter must be a mapping, got {type(filter).__name__}")

    if "$and" in filter:
        subs = _sub_filters("$and", filter["$and"])
        if not all(matches(document, sub) for sub in subs):
            return False
    if "$or" in filter:
        subs = _sub_filters("$or", filter["$or"])
        if not any(matches(document, sub) for sub in subs):
            return False
    if "$not" in filter:
        if not isinstance(filter["$not"], dict):
            raise InvalidFilter("$not must be a filter mapping")
        if matches(document, filter["$not"]):
            return False

    for field, rule in filter.items():
        if field in LOGICAL_OPERATORS:
            continue
        if field.startswith("$"):
            raise UnknownOperator(field)

        value = document.get(field, ABSENT) if isinstance(document, dict) else ABSENT

        if isinstance(rule, dict):
            for operator, operand in rule.items():
                if not _apply_operator(operator, value, operand):
                    return False
        elif not structurally_equal(value, rule):
            return False
    return True


def _sort_spec(sort: Any) -> tuple[str, bool]:
    if not isinstance(sort, dict) or len(sort) != 1:
        raise InvalidFilter("sort must be a mapping of exactly one field to a direction")
    field, direction = next(iter(sort.items()))
    if direction in (1, "asc"):
        return field, False
    if direction in (-1, "desc"):
        return field, True
    raise InvalidFilter(f"Invalid sort direction {direction!r} for {field}")


def _count(name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidFilter(f"{name} must be a non-negative integer, got {value!r}")
    return value


def query(
    container: Any,
    filter: Any = None,
    sort: dict | None = None,
    skip: int | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """
    Run a filter over the immediate children of a container.

    Only children that are maps are considered. Results are {key, value}
    dicts; post-processing order is sort, then skip, then limit.

    Args:
        container: Map or list whose children are tested.
        filter: Filter expression (see matches()).
        sort: {field: 1 | -1}. Stable; incomparable values keep their order.
        skip: Number of leading results to drop.
        limit: Maximum number of results.

    Returns:
        Matching children in order.
    """
    skip = _count("skip", skip)
    limit = _count("limit", limit)

    if isinstance(container, dict):
        children = container.items()
    elif isinstance(container, list):
        children = ((str(i), v) for i, v in enumerate(container))
    else:
        return []

    out = [
        {"key": key, "value": value}
        for key, value in children
        if isinstance(value, dict) and matches(value, filter)
    ]

    if sort:
        field, descending = _sort_spec(sort)

        def by_field(a: dict, b: dict) -> int:
            result = compare(a["value"].get(field, ABSENT), b["value"].get(field, ABSENT))
            return -result if descending else result

        out.sort(key=cmp_to_key(by_field))

    if skip:
        out = out[skip:]
    if limit is not None:
        out = out[:limit]
    return out
