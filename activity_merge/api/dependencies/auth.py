"""FastAPI authentication dependency.

Authentication itself happens upstream (gateway / auth service). The
authenticated owner id arrives either on request.state (set by auth
middleware) or in a trusted header whose name is configured by
AUTH_USER_HEADER.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status
from loguru import logger

from activity_merge.config.settings import settings


def get_current_user_id(request: Request) -> str:
    """FastAPI dependency returning the authenticated owner id.

    Raises:
        HTTPException: 401 if no authenticated owner is attached to the request
    """
    user_id = getattr(request.state, "user_id", None) or request.headers.get(settings.auth_user_header)
    if not user_id:
        logger.warning(f"Unauthenticated request to {request.method} {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return str(user_id)
