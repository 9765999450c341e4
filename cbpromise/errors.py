"""Exception types raised by cbpromise."""

from typing import Any


class PromisifyError(Exception):
    """Base class for every error raised by cbpromise."""


class MalformedFunctionError(PromisifyError, ValueError):
    """
    A function node violates the preconditions of the rewrite.

    Raised instead of emitting a broken tree: a missing or empty body,
    a missing name allocator, or an async generator body.
    """


class ConventionMismatchError(PromisifyError, ValueError):
    """An explicitly requested rewrite targets a function outside the callback convention."""


class RejectedError(PromisifyError):
    """A deferred was rejected with a value that is not an exception."""

    def __init__(self, reason: Any):
        super().__init__(f"Deferred rejected with {reason!r}")
        self.reason = reason
