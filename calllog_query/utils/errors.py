"""Custom exceptions for the call-log query engine."""

from __future__ import annotations

from typing import Any, Optional


class CallLogQueryError(Exception):
    """Base exception for all calllog-query errors."""
    pass


class FilterError(CallLogQueryError):
    """Raised when a single filter rule cannot be compiled.

    Compile-time errors are recovered locally: the compiler drops the
    offending rule and keeps going.
    """

    def __init__(self, message: str, *, rule: Optional[Any] = None):
        self.rule = rule
        rule_id = getattr(rule, "id", None)
        if rule_id:
            message = f"{message} (rule={rule_id})"
        super().__init__(message)


class ValidationError(FilterError):
    """Raised when a rule is missing a required value or jsonField."""
    pass


class UnsupportedOperationError(FilterError):
    """Raised when a rule names an operation the compiler does not know."""
    pass


class BackendQueryError(CallLogQueryError):
    """Raised when fetching a page from the row store fails."""

    def __init__(self, message: str, *, offset: Optional[int] = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (offset={offset})"
        super().__init__(message)


class InsufficientDataError(CallLogQueryError):
    """Raised when a percentile was requested for a too-small sample."""

    def __init__(self, signal: str, *, sample_size: int = 0, minimum: int = 0):
        self.signal = signal
        self.sample_size = sample_size
        self.minimum = minimum
        super().__init__(
            f"Not enough samples for '{signal}' percentile "
            f"({sample_size} < {minimum})"
        )


class DiscoverySamplingFailure(CallLogQueryError):
    """Raised when sampling records for field discovery fails."""
    pass
