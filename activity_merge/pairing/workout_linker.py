"""Manual linking of activities to planned workouts.

Explicit, user-controlled link/unlink between an activity and a planned
workout. The link is stored on both sides (activity.planned_workout_id and
planned_workout.completed_activity_id) and is one-to-one: linking releases
whatever either side was linked to before.

Both operations are owner-scoped the same way merge resolution is, and both
are idempotent. Every change is recorded in resolution_decisions.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from activity_merge.activities.store import get_owned_activity
from activity_merge.db.models import Activity, CompletionStatus, PlannedWorkout, ResolutionDecision
from activity_merge.merge.errors import NotFoundError, UpstreamFailureError

WORKOUT_NOT_FOUND = "Planned workout not found"

COMPLETED_VARIANCE_PCT = 20
PARTIAL_VARIANCE_PCT = 50


@dataclass(frozen=True)
class LinkOutcome:
    activity_id: int
    planned_workout_id: int | None
    changed: bool


def _find_owned_workout(session: Session, workout_id: int, owner_id: str) -> PlannedWorkout | None:
    return session.execute(
        select(PlannedWorkout).where(PlannedWorkout.id == workout_id, PlannedWorkout.owner_id == owner_id)
    ).scalar_one_or_none()


def _variance_pct(actual: float | None, target: float | None) -> float:
    """Signed percent difference of actual vs target; 0 when either is unknown."""
    if not actual or not target:
        return 0.0
    return (actual - target) / target * 100


def compute_completion(activity: Activity, workout: PlannedWorkout) -> tuple[CompletionStatus, dict]:
    """Completion status and metadata of a workout executed by an activity.

    completed: distance and duration both within 20 % of target
    partial: either within 50 %
    skipped: otherwise
    """
    distance_variance = _variance_pct(activity.distance_meters, workout.distance_target_meters)
    duration_variance = _variance_pct(activity.duration_seconds, workout.duration_target_seconds)

    if abs(distance_variance) < COMPLETED_VARIANCE_PCT and abs(duration_variance) < COMPLETED_VARIANCE_PCT:
        status = CompletionStatus.COMPLETED
    elif abs(distance_variance) < PARTIAL_VARIANCE_PCT or abs(duration_variance) < PARTIAL_VARIANCE_PCT:
        status = CompletionStatus.PARTIAL
    else:
        status = CompletionStatus.SKIPPED

    return status, {
        "actual_distance_meters": activity.distance_meters,
        "actual_duration_seconds": activity.duration_seconds,
        "distance_variance_percent": distance_variance,
        "duration_variance_percent": duration_variance,
    }


def _reset_workout(workout: PlannedWorkout) -> None:
    workout.completed_activity_id = None
    workout.completion_status = CompletionStatus.PENDING.value
    workout.completion_metadata = None


def _clear_activity_link(activity: Activity) -> None:
    activity.planned_workout_id = None
    activity.match_confidence = None
    activity.match_method = None
    activity.match_metadata = None


def _log_decision(
    *,
    session: Session,
    owner_id: str,
    activity_id: int,
    planned_workout_id: int | None,
    decision: str,
    reason: str | None,
) -> None:
    session.add(
        ResolutionDecision(
            owner_id=owner_id,
            activity_id=activity_id,
            planned_workout_id=planned_workout_id,
            decision=decision,
            reason=reason,
        )
    )


def link_workout(
    *,
    activity_id: int,
    workout_id: int,
    owner_id: str,
    reason: str | None,
    session: Session,
) -> LinkOutcome:
    """Link an activity to a planned workout.

    Linking an activity to the workout it is already linked to with the same
    reason changes nothing and succeeds.

    Args:
        activity_id: Activity ID
        workout_id: Planned workout ID
        owner_id: Authenticated caller's owner id
        reason: Free-text reason stored for audit
        session: Database session

    Raises:
        NotFoundError: If the activity or workout is missing or not owned by the caller
        UpstreamFailureError: If the commit fails
    """
    try:
        activity = get_owned_activity(session, activity_id, owner_id)
        workout = _find_owned_workout(session, workout_id, owner_id)
        if workout is None:
            raise NotFoundError(WORKOUT_NOT_FOUND)

        already_linked = activity.planned_workout_id == workout.id and workout.completed_activity_id == activity.id
        if already_linked and (activity.match_metadata or {}).get("manual_link_reason") == reason:
            logger.debug(f"[LINK] Activity {activity.id} already linked to workout {workout.id}", owner_id=owner_id)
            return LinkOutcome(activity_id=activity.id, planned_workout_id=workout.id, changed=False)

        if activity.planned_workout_id is not None and activity.planned_workout_id != workout.id:
            previous = _find_owned_workout(session, activity.planned_workout_id, owner_id)
            if previous is not None and previous.completed_activity_id == activity.id:
                logger.debug(f"[LINK] Releasing previous workout {previous.id} from activity {activity.id}")
                _reset_workout(previous)

        if workout.completed_activity_id is not None and workout.completed_activity_id != activity.id:
            other = session.execute(
                select(Activity).where(Activity.id == workout.completed_activity_id, Activity.owner_id == owner_id)
            ).scalar_one_or_none()
            if other is not None and other.planned_workout_id == workout.id:
                logger.debug(f"[LINK] Releasing activity {other.id} from workout {workout.id}")
                _clear_activity_link(other)

        completion_status, completion_metadata = compute_completion(activity, workout)

        activity.planned_workout_id = workout.id
        activity.match_confidence = 1.0
        activity.match_method = "manual"
        activity.match_metadata = {"manual_link_reason": reason}

        workout.completed_activity_id = activity.id
        workout.completion_status = completion_status.value
        workout.completion_metadata = completion_metadata

        _log_decision(
            session=session,
            owner_id=owner_id,
            activity_id=activity.id,
            planned_workout_id=workout.id,
            decision="manual_link",
            reason=reason,
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[LINK] Failed to link activity {activity_id} to workout {workout_id}: {e}")
        raise UpstreamFailureError("Link failed") from e

    logger.info(
        f"[LINK] Linked activity {activity_id} to planned workout {workout_id} ({completion_status.value})",
        owner_id=owner_id,
    )
    return LinkOutcome(activity_id=activity_id, planned_workout_id=workout_id, changed=True)


def unlink_workout(*, activity_id: int, owner_id: str, session: Session) -> LinkOutcome:
    """Remove the link between an activity and its planned workout.

    Unlinking an activity that is not linked succeeds without changes.

    Raises:
        NotFoundError: If the activity is missing or not owned by the caller
        UpstreamFailureError: If the commit fails
    """
    try:
        activity = get_owned_activity(session, activity_id, owner_id)
        workout_id = activity.planned_workout_id
        if workout_id is None:
            logger.debug(f"[LINK] Activity {activity.id} has no planned workout link", owner_id=owner_id)
            return LinkOutcome(activity_id=activity.id, planned_workout_id=None, changed=False)

        workout = _find_owned_workout(session, workout_id, owner_id)
        if workout is not None and workout.completed_activity_id == activity.id:
            _reset_workout(workout)
        _clear_activity_link(activity)

        _log_decision(
            session=session,
            owner_id=owner_id,
            activity_id=activity.id,
            planned_workout_id=workout_id,
            decision="manual_unlink",
            reason="user_action",
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[LINK] Failed to unlink activity {activity_id}: {e}")
        raise UpstreamFailureError("Unlink failed") from e

    logger.info(f"[LINK] Unlinked activity {activity_id} from planned workout {workout_id}", owner_id=owner_id)
    return LinkOutcome(activity_id=activity_id, planned_workout_id=workout_id, changed=True)
