"""Manual activity ↔ planned workout linking endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.orm import Session

from activity_merge.api.dependencies.auth import get_current_user_id
from activity_merge.api.errors import to_http_exception
from activity_merge.api.schemas import LinkWorkoutRequest, UnlinkWorkoutRequest
from activity_merge.db.session import get_db
from activity_merge.merge.errors import MergeEngineError
from activity_merge.pairing.workout_linker import link_workout, unlink_workout

router = APIRouter(prefix="/activities", tags=["activities", "pairing"])


@router.post("/link")
def link_activity(
    request: LinkWorkoutRequest,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_db),
):
    """Link an activity to a planned workout.

    Args:
        request: activityId, workoutId and an optional reason
        user_id: Current authenticated user ID (from auth dependency)
        session: Database session

    Returns:
        Response with link status

    Raises:
        HTTPException: 404 if the activity or workout is not found for the caller
        HTTPException: 503 if the link could not be stored
    """
    logger.info(
        f"[LINK] Link request for activity_id={request.activity_id}, workout_id={request.workout_id}, user_id={user_id}"
    )
    try:
        outcome = link_workout(
            activity_id=request.activity_id,
            workout_id=request.workout_id,
            owner_id=user_id,
            reason=request.reason,
            session=session,
        )
    except MergeEngineError as e:
        raise to_http_exception(e) from e

    return {
        "success": True,
        "activityId": outcome.activity_id,
        "workoutId": outcome.planned_workout_id,
        "changed": outcome.changed,
    }


@router.delete("/link")
def unlink_activity(
    request: UnlinkWorkoutRequest,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_db),
):
    """Remove the link between an activity and its planned workout."""
    logger.info(f"[LINK] Unlink request for activity_id={request.activity_id}, user_id={user_id}")
    try:
        outcome = unlink_workout(activity_id=request.activity_id, owner_id=user_id, session=session)
    except MergeEngineError as e:
        raise to_http_exception(e) from e

    return {
        "success": True,
        "activityId": outcome.activity_id,
        "changed": outcome.changed,
    }
