"""Mapping from engine errors to HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from activity_merge.merge.errors import (
    ConflictError,
    InvalidInputError,
    MergeEngineError,
    NotFoundError,
    UpstreamFailureError,
)


def to_http_exception(error: MergeEngineError) -> HTTPException:
    """Translate a domain error into the HTTP response the client sees."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, UpstreamFailureError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")
