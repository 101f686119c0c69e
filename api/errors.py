"""Mapping from domain errors to HTTP responses."""

from fastapi import HTTPException, status

from auth import AuthError
from errors import (
    SplitError, ValidationError, NotFoundError, ForbiddenError, AlreadyExistsError,
    AlreadyPendingError, SelfReferenceError, StoreError, ConstraintViolationError,
    SessionExpiredError, message_for
)

# Most specific classes first
STATUS_CODES = [
    (ConstraintViolationError, status.HTTP_409_CONFLICT),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (SelfReferenceError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (AlreadyExistsError, status.HTTP_409_CONFLICT),
    (AlreadyPendingError, status.HTTP_409_CONFLICT),
    (SessionExpiredError, status.HTTP_401_UNAUTHORIZED),
    (AuthError, status.HTTP_401_UNAUTHORIZED),
]


def status_for(error: SplitError) -> int:
    for kind, code in STATUS_CODES:
        if isinstance(error, kind):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http(error: SplitError) -> HTTPException:
    """Build the HTTPException for a domain error."""
    return HTTPException(status_code=status_for(error), detail=message_for(error))


__all__ = ['to_http', 'status_for', 'STATUS_CODES']
