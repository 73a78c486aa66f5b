"""Pre-insert duplicate lookup for ingestion.

Before a sync inserts a record, ingestion can ask whether the owner already
has the same workout from another source. Only HIGH confidence matches are
returned; weaker matches are left for the scanner to flag for review.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy.orm import Session

from activity_merge.activities.store import list_activities_near
from activity_merge.db.models import Activity, MergeStatus
from activity_merge.merge.scorer import ActivityFacts, ConfidenceTier, score_pair

SEARCH_WINDOW_HOURS = 12


def find_existing_match(session: Session, owner_id: str, candidate: ActivityFacts) -> Activity | None:
    """Find an existing activity that the incoming record duplicates.

    Args:
        session: Database session
        owner_id: Owner of the incoming record
        candidate: Incoming record (not yet persisted)

    Returns:
        The best HIGH confidence match within ±12 h, or None
    """
    best: Activity | None = None
    best_score = float("-inf")

    for existing in list_activities_near(session, owner_id, candidate.start_time, hours=SEARCH_WINDOW_HOURS):
        if existing.merge_status == MergeStatus.MERGED.value and existing.merged_into_id is not None:
            continue
        result = score_pair(ActivityFacts.from_activity(existing), candidate)
        if result.tier is ConfidenceTier.HIGH and result.score > best_score:
            best, best_score = existing, result.score

    if best is not None:
        logger.info(
            f"[MERGE] Incoming {candidate.source} record duplicates activity {best.id} (score={best_score:.1f})",
            owner_id=owner_id,
        )
    return best
