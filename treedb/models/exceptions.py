"""
Custom exceptions for the document store.
"""


class StoreError(Exception):
    """Base class for all errors raised by the store."""


class InvalidKey(StoreError):
    """Raised when a key is empty, not a string, or has no path segments."""

    def __init__(self, key: object):
        self.key = key
        super().__init__(f"Invalid key: {key!r}. Keys must be non-empty strings.")


class SchemaViolation(StoreError):
    """
    Raised when a value fails the configured schema check on write.

    Attributes:
        field: Name of the offending field.
        expected: Human readable name of the expected type.
    """

    def __init__(self, field: str, expected: str):
        self.field = field
        self.expected = expected
        super().__init__(f"Schema validation failed: {field} must be a {expected}")


class InvalidFilter(StoreError):
    """Raised when a query filter or query option is malformed."""


class UnknownOperator(InvalidFilter):
    """Raised when a filter uses an operator the query matcher does not know."""

    def __init__(self, operator: str):
        self.operator = operator
        super().__init__(f"Unknown operator {operator}")


class UnsupportedFormat(StoreError):
    """Raised at construction when the storage format is not recognized."""

    def __init__(self, format: str):
        self.format = format
        super().__init__(f"Unsupported file format: {format}")


class IOFailure(StoreError):
    """
    Raised when a codec or filesystem operation fails.

    The original exception is chained as __cause__.
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"I/O failure on {path}: {reason}")


class HookError(StoreError):
    """Raised when a pre or post hook fails. The hook's exception is __cause__."""

    def __init__(self, stage: str, action: str):
        self.stage = stage
        self.action = action
        super().__init__(f"{stage} hook for '{action}' failed")


class ReentrantCallError(StoreError, RuntimeError):
    """
    Raised when a running operation tries to enqueue another operation
    on the same store from its own task, which would otherwise deadlock.
    """
