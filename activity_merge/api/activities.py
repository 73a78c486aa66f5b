"""Activity maintenance endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.orm import Session

from activity_merge.activities.store import delete_activities
from activity_merge.api.dependencies.auth import get_current_user_id
from activity_merge.api.errors import to_http_exception
from activity_merge.api.schemas import DeleteActivitiesRequest
from activity_merge.db.session import get_db
from activity_merge.merge.errors import MergeEngineError

router = APIRouter(prefix="/activities", tags=["activities"])


@router.delete("/delete")
def bulk_delete_activities(
    request: DeleteActivitiesRequest,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_db),
):
    """Delete several of the caller's activities at once.

    Ids that are unknown or owned by someone else are skipped silently.

    Raises:
        HTTPException: 400 if ids is missing, empty or not a list of integers
        HTTPException: 503 if the delete could not be committed
    """
    logger.info(f"[ACTIVITIES] Bulk delete request from user_id={user_id}")
    try:
        count = delete_activities(session, user_id, request.ids)
    except MergeEngineError as e:
        raise to_http_exception(e) from e

    return {
        "success": True,
        "message": f"Deleted {count} activities",
        "count": count,
    }
