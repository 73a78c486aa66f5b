"""WorkoutFlag persistence for merge candidates.

This module is the only place merge_candidate flags are written, read or
removed. The (activity_id, flag_type) pair is unique, so every write is an
upsert: scanning the same data twice never creates a second flag.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from activity_merge.db.models import Activity, FlagType, MergeStatus, WorkoutFlag
from activity_merge.merge.scorer import ConfidenceTier

DEFAULT_CONFIDENCE = ConfidenceTier.MEDIUM.value
DEFAULT_CONFIDENCE_SCORE = 70


@dataclass(frozen=True)
class MergeCandidatePayload:
    """flag_data of a merge_candidate flag."""

    potential_match_id: int
    confidence: ConfidenceTier
    confidence_score: float

    def to_flag_data(self) -> dict:
        return {
            "potential_match_id": self.potential_match_id,
            "confidence": self.confidence.value,
            "confidence_score": self.confidence_score,
        }


@dataclass
class PendingMergePair:
    """A flagged activity, the activity it probably duplicates, and the display confidence."""

    activity: Activity
    match_activity: Activity
    confidence: str
    confidence_score: int

    def to_dict(self) -> dict:
        return {
            "activity": self.activity.to_dict(),
            "matchActivity": self.match_activity.to_dict(),
            "confidence": self.confidence,
            "confidenceScore": self.confidence_score,
        }


def get_merge_candidate(session: Session, activity_id: int) -> WorkoutFlag | None:
    """Get the live merge_candidate flag for an activity.

    Args:
        session: Database session
        activity_id: Activity ID

    Returns:
        WorkoutFlag if found, None otherwise
    """
    return session.execute(
        select(WorkoutFlag).where(
            WorkoutFlag.activity_id == activity_id,
            WorkoutFlag.flag_type == FlagType.MERGE_CANDIDATE.value,
        )
    ).scalar_one_or_none()


def upsert_merge_candidate(
    session: Session,
    owner_id: str,
    activity_id: int,
    payload: MergeCandidatePayload,
) -> WorkoutFlag:
    """Create or replace the merge_candidate flag of an activity.

    A concurrent writer may insert the same key between our read and our
    insert (overlapping scan chunks). The insert runs in a savepoint; on
    IntegrityError the winning row is re-read and overwritten. Payloads are
    derived from the same data, so last write wins.

    Args:
        session: Database session
        owner_id: Owner of the flagged activity
        activity_id: Flagged activity ID
        payload: Match details to store

    Returns:
        The created or updated WorkoutFlag
    """
    flag_data = payload.to_flag_data()

    existing = get_merge_candidate(session, activity_id)
    if existing is not None:
        existing.flag_data = flag_data
        existing.updated_at = datetime.now(timezone.utc)
        logger.debug(
            "[FLAGS] Updated merge candidate flag",
            activity_id=activity_id,
            potential_match_id=payload.potential_match_id,
        )
        return existing

    flag = WorkoutFlag(
        owner_id=owner_id,
        activity_id=activity_id,
        flag_type=FlagType.MERGE_CANDIDATE.value,
        severity="info",
        flag_data=flag_data,
    )
    try:
        with session.begin_nested():
            session.add(flag)
    except IntegrityError:
        logger.debug("[FLAGS] Concurrent merge candidate insert, updating winner", activity_id=activity_id)
        winner = get_merge_candidate(session, activity_id)
        if winner is None:
            raise
        winner.flag_data = flag_data
        winner.updated_at = datetime.now(timezone.utc)
        return winner

    logger.debug(
        "[FLAGS] Created merge candidate flag",
        activity_id=activity_id,
        potential_match_id=payload.potential_match_id,
    )
    return flag


def delete_merge_candidate(session: Session, activity_id: int) -> bool:
    """Delete the merge_candidate flag of an activity.

    Returns:
        True if a flag was deleted, False if none existed
    """
    result = session.execute(
        delete(WorkoutFlag).where(
            WorkoutFlag.activity_id == activity_id,
            WorkoutFlag.flag_type == FlagType.MERGE_CANDIDATE.value,
        )
    )
    deleted = (result.rowcount or 0) > 0
    if deleted:
        logger.debug("[FLAGS] Deleted merge candidate flag", activity_id=activity_id)
    return deleted


def _display_score(raw: object) -> int:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return round(raw)
    return DEFAULT_CONFIDENCE_SCORE


def list_pending_merge_candidates(session: Session, owner_id: str) -> list[PendingMergePair]:
    """List the owner's activities awaiting duplicate review.

    Flags without a potential_match_id, or whose match no longer exists for
    this owner, are stale and skipped.

    Args:
        session: Database session
        owner_id: Authenticated caller's owner id

    Returns:
        Pending pairs, most recent activity first
    """
    pending = list(
        session.execute(
            select(Activity)
            .where(
                Activity.owner_id == owner_id,
                Activity.merge_status == MergeStatus.PENDING_REVIEW.value,
            )
            .order_by(Activity.start_time.desc(), Activity.id.desc())
        ).scalars()
    )
    if not pending:
        return []

    flags = {
        flag.activity_id: flag
        for flag in session.execute(
            select(WorkoutFlag).where(
                WorkoutFlag.activity_id.in_([activity.id for activity in pending]),
                WorkoutFlag.flag_type == FlagType.MERGE_CANDIDATE.value,
            )
        ).scalars()
    }

    pairs: list[PendingMergePair] = []
    for activity in pending:
        flag = flags.get(activity.id)
        match_id = (flag.flag_data or {}).get("potential_match_id") if flag else None
        if match_id is None:
            continue

        match_activity = session.execute(
            select(Activity).where(Activity.id == match_id, Activity.owner_id == owner_id)
        ).scalar_one_or_none()
        if match_activity is None:
            logger.debug("[FLAGS] Skipping stale merge flag", activity_id=activity.id, potential_match_id=match_id)
            continue

        pairs.append(
            PendingMergePair(
                activity=activity,
                match_activity=match_activity,
                confidence=flag.flag_data.get("confidence") or DEFAULT_CONFIDENCE,
                confidence_score=_display_score(flag.flag_data.get("confidence_score")),
            )
        )

    return pairs
