"""Owner-scoped activity queries.

Every helper here filters by owner_id. A row that exists but belongs to
another owner is indistinguishable from a row that does not exist.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from activity_merge.db.models import Activity, CompletionStatus, PlannedWorkout, WorkoutFlag
from activity_merge.merge.errors import InvalidInputError, NotFoundError, UpstreamFailureError

ACTIVITY_NOT_FOUND = "Activity not found"


def find_owned_activity(session: Session, activity_id: int, owner_id: str) -> Activity | None:
    """Get an activity only if it belongs to owner_id.

    Args:
        session: Database session
        activity_id: Activity ID
        owner_id: Authenticated caller's owner id

    Returns:
        Activity if found and owned, None otherwise
    """
    return session.execute(
        select(Activity).where(Activity.id == activity_id, Activity.owner_id == owner_id)
    ).scalar_one_or_none()


def get_owned_activity(session: Session, activity_id: int, owner_id: str) -> Activity:
    """Like find_owned_activity, but raises NotFoundError instead of returning None."""
    activity = find_owned_activity(session, activity_id, owner_id)
    if activity is None:
        raise NotFoundError(ACTIVITY_NOT_FOUND)
    return activity


def list_activities_in_window(
    session: Session,
    owner_id: str,
    start: datetime,
    end: datetime,
) -> list[Activity]:
    """List owner activities with start_time in [start, end).

    Ordered by start_time ascending, ties broken by id so adjacent-pair
    walks are deterministic.
    """
    return list(
        session.execute(
            select(Activity)
            .where(
                Activity.owner_id == owner_id,
                Activity.start_time >= start,
                Activity.start_time < end,
            )
            .order_by(Activity.start_time.asc(), Activity.id.asc())
        ).scalars()
    )


def list_activities_near(
    session: Session,
    owner_id: str,
    around: datetime,
    hours: int = 12,
) -> list[Activity]:
    """List owner activities starting within ±hours of a timestamp."""
    return list_activities_in_window(
        session,
        owner_id,
        around - timedelta(hours=hours),
        around + timedelta(hours=hours, microseconds=1),
    )


def list_owner_ids(session: Session, since: datetime | None = None) -> list[str]:
    """Distinct owners with at least one activity (optionally since a timestamp)."""
    query = select(Activity.owner_id).distinct()
    if since is not None:
        query = query.where(Activity.start_time >= since)
    return list(session.execute(query.order_by(Activity.owner_id)).scalars())


def _validate_ids(ids: object) -> list[int]:
    if not isinstance(ids, list) or len(ids) == 0:
        raise InvalidInputError("ids must be a non-empty array")
    if not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
        raise InvalidInputError("ids must contain only integer activity ids")
    return list(dict.fromkeys(ids))


def delete_activities(session: Session, owner_id: str, ids: object) -> int:
    """Bulk-delete activities by id, scoped to owner_id.

    Ids that do not exist or belong to another owner are ignored. Flags on
    the deleted activities are removed and planned workouts they completed
    are released. Flags on other activities that point at a deleted one are
    left in place; listing treats them as stale.

    Args:
        session: Database session
        owner_id: Authenticated caller's owner id
        ids: Activity ids to delete

    Returns:
        Number of activities deleted

    Raises:
        InvalidInputError: If ids is not a non-empty list of integers
        UpstreamFailureError: If the database operation fails
    """
    activity_ids = _validate_ids(ids)

    try:
        owned_ids = list(
            session.execute(
                select(Activity.id).where(Activity.id.in_(activity_ids), Activity.owner_id == owner_id)
            ).scalars()
        )
        if not owned_ids:
            logger.info(f"[ACTIVITIES] No owned activities to delete for owner_id={owner_id}")
            return 0

        session.execute(delete(WorkoutFlag).where(WorkoutFlag.activity_id.in_(owned_ids)))
        session.execute(
            update(PlannedWorkout)
            .where(PlannedWorkout.owner_id == owner_id, PlannedWorkout.completed_activity_id.in_(owned_ids))
            .values(
                completed_activity_id=None,
                completion_status=CompletionStatus.PENDING.value,
                completion_metadata=None,
            )
        )
        result = session.execute(
            delete(Activity).where(Activity.id.in_(owned_ids), Activity.owner_id == owner_id)
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[ACTIVITIES] Bulk delete failed for owner_id={owner_id}: {e}")
        raise UpstreamFailureError("Failed to delete activities") from e

    count = result.rowcount or 0
    logger.info(f"[ACTIVITIES] Deleted {count} activities for owner_id={owner_id}")
    return count
