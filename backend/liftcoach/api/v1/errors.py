"""Domain error -> HTTPException mapping used by the endpoints."""

from fastapi import HTTPException, status

from liftcoach.core.errors import (
    ConflictError,
    DomainError,
    MaxNotFoundError,
    NotFoundError,
    ValidationError,
)

MISSING_MAX_DETAIL = "Missing lift max: set up your training maxes to generate workouts"


def http_error(exc: DomainError) -> HTTPException:
    """Translate a domain error into the response it should produce.

    Usage:
        except DomainError as exc:
            raise http_error(exc) from exc
    """
    if isinstance(exc, MaxNotFoundError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_MAX_DETAIL)
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
