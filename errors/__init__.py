"""Error taxonomy shared by every manager.

Managers raise these typed exceptions and the HTTP layer turns them into
status codes. Each kind also carries a coarse, user-facing category string
so presentation code never has to show store internals.
"""

from typing import Optional

__all__ = [
    'SplitError',
    'ValidationError',
    'NotFoundError',
    'ForbiddenError',
    'AlreadyExistsError',
    'AlreadyPendingError',
    'SelfReferenceError',
    'StoreError',
    'ConstraintViolationError',
    'SessionExpiredError',
    'message_for'
]


class SplitError(Exception):
    """Base exception for all domain operations."""
    category = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.category)
        self.message = message or self.category


class ValidationError(SplitError):
    """Raised when input is malformed or a precondition does not hold."""
    category = "Invalid request"


class NotFoundError(SplitError):
    """Raised when a referenced entity does not exist."""
    category = "Not found"


class ForbiddenError(SplitError):
    """Raised when the caller is not allowed to perform the operation."""
    category = "Not authorized"


class AlreadyExistsError(SplitError):
    """Raised when the requested relationship already exists."""
    category = "Already exists"


class AlreadyPendingError(SplitError):
    """Raised when an equivalent request is still waiting for an answer."""
    category = "Request already pending"


class SelfReferenceError(SplitError):
    """Raised when a user targets themselves."""
    category = "You cannot do that to yourself"


class StoreError(SplitError):
    """Raised when the persistence layer fails.

    Serialization failures are reported with ``retryable`` set so callers
    may try the whole operation again.
    """
    category = "Storage unavailable, please try again"

    def __init__(self, message: Optional[str] = None, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ConstraintViolationError(StoreError):
    """Raised when a write breaks a uniqueness constraint."""
    category = "Conflicting update"


class SessionExpiredError(SplitError):
    """Raised when the acting identity changed or became invalid mid-flight."""
    category = "Session has expired"


def message_for(error: Exception) -> str:
    """Return the short user-facing message for an exception.

    Store failures only ever expose their category.
    """
    if isinstance(error, StoreError):
        return error.category
    if isinstance(error, SplitError):
        return error.message
    return SplitError.category
