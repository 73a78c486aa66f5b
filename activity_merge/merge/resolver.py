"""Human review of merge candidates.

Resolution state machine for an activity:

    unlinked -> pending_review -> merged | kept_separate

pending_review is only entered by the scanner. From it, the reviewer can
accept (merge) or reject (keep separate). Repeating a decision that has
already been applied is a no-op success so callers can retry freely.

Every operation first loads the activity scoped to the caller. Missing and
not-owned rows raise the same NotFoundError. Each decision is written to
resolution_decisions in the same commit as the state change.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from activity_merge.activities.store import find_owned_activity, get_owned_activity
from activity_merge.config.settings import settings
from activity_merge.db.models import Activity, CompletionStatus, MergeStatus, PlannedWorkout, ResolutionDecision
from activity_merge.merge.errors import ConflictError, StaleFlagError, UpstreamFailureError
from activity_merge.merge.flag_store import (
    PendingMergePair,
    delete_merge_candidate,
    get_merge_candidate,
    list_pending_merge_candidates,
)


@dataclass(frozen=True)
class ResolutionOutcome:
    activity_id: int
    merge_status: str
    changed: bool
    match_activity_id: int | None = None


def _log_decision(
    *,
    session: Session,
    owner_id: str,
    activity_id: int,
    match_activity_id: int | None,
    decision: str,
    reason: str,
) -> None:
    session.add(
        ResolutionDecision(
            owner_id=owner_id,
            activity_id=activity_id,
            match_activity_id=match_activity_id,
            decision=decision,
            reason=reason,
        )
    )


def _commit(session: Session, action: str, activity_id: int) -> None:
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[MERGE] Failed to {action} activity {activity_id}: {e}")
        raise UpstreamFailureError(f"Failed to {action} activity") from e


def _clear_leftover_flag(session: Session, activity: Activity, action: str) -> ResolutionOutcome:
    """Repeat of an already-applied decision: drop any flag still attached and succeed."""
    if delete_merge_candidate(session, activity.id):
        _commit(session, action, activity.id)
        logger.info(f"[MERGE] Removed leftover merge flag on already-resolved activity {activity.id}")
    return ResolutionOutcome(activity_id=activity.id, merge_status=activity.merge_status, changed=False)


def list_pending(*, owner_id: str, session: Session) -> list[PendingMergePair]:
    """List the owner's merge candidates awaiting review.

    Raises:
        UpstreamFailureError: If the database query fails
    """
    try:
        return list_pending_merge_candidates(session, owner_id)
    except SQLAlchemyError as e:
        logger.exception(f"[MERGE] Failed to list merge candidates for owner_id={owner_id}: {e}")
        raise UpstreamFailureError("Failed to fetch merge candidates") from e


def reject_candidate(*, activity_id: int, owner_id: str, session: Session) -> ResolutionOutcome:
    """Keep a flagged activity separate from its potential match.

    Args:
        activity_id: Flagged activity ID
        owner_id: Authenticated caller's owner id
        session: Database session

    Returns:
        ResolutionOutcome; changed is False when the activity was already kept separate

    Raises:
        NotFoundError: If the activity is missing or not owned by the caller
        ConflictError: If the activity is unlinked or already merged
        UpstreamFailureError: If the commit fails
    """
    try:
        activity = get_owned_activity(session, activity_id, owner_id)

        if activity.merge_status == MergeStatus.KEPT_SEPARATE.value:
            return _clear_leftover_flag(session, activity, "keep separate")

        if activity.merge_status != MergeStatus.PENDING_REVIEW.value:
            raise ConflictError(f"Activity is {activity.merge_status} and has no pending merge review")

        flag = get_merge_candidate(session, activity.id)
        match_activity_id = (flag.flag_data or {}).get("potential_match_id") if flag else None

        activity.merge_status = MergeStatus.KEPT_SEPARATE.value
        delete_merge_candidate(session, activity.id)
        _log_decision(
            session=session,
            owner_id=owner_id,
            activity_id=activity.id,
            match_activity_id=match_activity_id,
            decision="keep_separate",
            reason="user_action",
        )
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[MERGE] Failed to keep activity {activity_id} separate: {e}")
        raise UpstreamFailureError("Failed to update activity") from e

    _commit(session, "keep separate", activity.id)
    logger.info(
        f"[MERGE] Activity {activity.id} kept separate from {match_activity_id}",
        owner_id=owner_id,
    )
    return ResolutionOutcome(
        activity_id=activity.id,
        merge_status=activity.merge_status,
        changed=True,
        match_activity_id=match_activity_id,
    )


def _apply_duplicate_policy(session: Session, primary: Activity, duplicate: Activity, policy: str) -> None:
    if policy == "delete":
        session.execute(
            update(PlannedWorkout)
            .where(PlannedWorkout.owner_id == duplicate.owner_id, PlannedWorkout.completed_activity_id == duplicate.id)
            .values(
                completed_activity_id=None,
                completion_status=CompletionStatus.PENDING.value,
                completion_metadata=None,
            )
        )
        session.delete(duplicate)
        return

    duplicate.merge_status = MergeStatus.MERGED.value
    duplicate.merged_into_id = primary.id


def accept_candidate(
    *,
    activity_id: int,
    owner_id: str,
    session: Session,
    duplicate_policy: str | None = None,
) -> ResolutionOutcome:
    """Merge a flagged activity with its potential match.

    The flagged activity survives. Its match is either marked as merged into
    it or deleted, depending on the duplicate policy. Both activities' merge
    flags are removed in the same commit as the status change, so a failure
    never leaves a merged activity with a live flag.

    Args:
        activity_id: Flagged activity ID
        owner_id: Authenticated caller's owner id
        session: Database session
        duplicate_policy: "mark" or "delete" (defaults to settings.merge_duplicate_policy)

    Returns:
        ResolutionOutcome; changed is False when the activity was already merged

    Raises:
        NotFoundError: If the activity is missing or not owned by the caller
        StaleFlagError: If the flag or its match activity no longer exists
        ConflictError: If the activity is not pending review or the match was already merged
        UpstreamFailureError: If the commit fails
    """
    policy = duplicate_policy or settings.merge_duplicate_policy

    try:
        activity = get_owned_activity(session, activity_id, owner_id)

        if activity.merge_status == MergeStatus.MERGED.value:
            return _clear_leftover_flag(session, activity, "merge")

        if activity.merge_status != MergeStatus.PENDING_REVIEW.value:
            raise ConflictError(f"Activity is {activity.merge_status} and has no pending merge review")

        flag = get_merge_candidate(session, activity.id)
        match_activity_id = (flag.flag_data or {}).get("potential_match_id") if flag else None
        if match_activity_id is None:
            raise StaleFlagError("Merge candidate flag not found")

        match_activity = find_owned_activity(session, match_activity_id, owner_id)
        if match_activity is None:
            raise StaleFlagError("Matched activity no longer exists")
        if match_activity.merge_status == MergeStatus.MERGED.value or match_activity.merged_into_id is not None:
            raise ConflictError("Matched activity has already been merged")

        activity.merge_status = MergeStatus.MERGED.value
        delete_merge_candidate(session, activity.id)
        delete_merge_candidate(session, match_activity.id)
        _apply_duplicate_policy(session, activity, match_activity, policy)
        _log_decision(
            session=session,
            owner_id=owner_id,
            activity_id=activity.id,
            match_activity_id=match_activity_id,
            decision="merge",
            reason=f"user_action:{policy}",
        )
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[MERGE] Failed to merge activity {activity_id}: {e}")
        raise UpstreamFailureError("Failed to merge activities") from e

    _commit(session, "merge", activity.id)
    logger.info(
        f"[MERGE] Merged activity {match_activity_id} into {activity.id} (policy={policy})",
        owner_id=owner_id,
    )
    return ResolutionOutcome(
        activity_id=activity.id,
        merge_status=activity.merge_status,
        changed=True,
        match_activity_id=match_activity_id,
    )
