"""Duplicate candidate scanning over an owner's activity history.

Walks an owner's activities in start-time order and scores each adjacent
pair from different sources. Long ranges are split into calendar-month
chunks so that retrieval stays bounded; chunks share no state and run on a
small worker pool, each with its own database session.

Re-running a scan is safe: candidates are recomputed from the same rows and
flag writes are upserts.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.orm import Session

from activity_merge.activities.store import list_activities_in_window
from activity_merge.config.settings import settings
from activity_merge.db.models import Activity, MergeStatus
from activity_merge.merge.errors import InvalidInputError
from activity_merge.merge.flag_store import MergeCandidatePayload, upsert_merge_candidate
from activity_merge.merge.scorer import ActivityFacts, MatchResult, score_pair

PAIR_MAX_SEPARATION = timedelta(hours=24)

SessionFactory = Callable[[], AbstractContextManager[Session]]


@dataclass(frozen=True)
class ScanWindow:
    """Half-open time range [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise InvalidInputError(f"Scan window end {self.end.isoformat()} must be after start {self.start.isoformat()}")


@dataclass(frozen=True)
class CandidatePair:
    """Two activities from different sources that probably describe one workout.

    activity_id is the later record (the one that gets flagged);
    match_activity_id is the earlier record it duplicates.
    """

    activity_id: int
    match_activity_id: int
    result: MatchResult

    def to_payload(self) -> MergeCandidatePayload:
        return MergeCandidatePayload(
            potential_match_id=self.match_activity_id,
            confidence=self.result.tier,
            confidence_score=self.result.score,
        )


@dataclass
class ScanResult:
    candidates: list[CandidatePair] = field(default_factory=list)
    chunks_processed: int = 0
    failed_chunks: list[ScanWindow] = field(default_factory=list)
    flagged: int = 0
    cancelled: bool = False


def _first_of_next_month(dt: datetime) -> datetime:
    if dt.month == 12:
        return dt.replace(year=dt.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return dt.replace(month=dt.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def month_chunks(window: ScanWindow) -> list[ScanWindow]:
    """Split a window at calendar-month boundaries, clamped to the window."""
    chunks: list[ScanWindow] = []
    cursor = window.start
    while cursor < window.end:
        chunk_end = min(_first_of_next_month(cursor), window.end)
        chunks.append(ScanWindow(start=cursor, end=chunk_end))
        cursor = chunk_end
    return chunks


def _can_be_flagged(activity: Activity) -> bool:
    return activity.merge_status not in {MergeStatus.MERGED.value, MergeStatus.KEPT_SEPARATE.value}


def _can_be_matched(activity: Activity) -> bool:
    return activity.merge_status != MergeStatus.MERGED.value and activity.merged_into_id is None


def find_adjacent_candidates(activities: Sequence[Activity], include_low: bool = False) -> list[CandidatePair]:
    """Score each adjacent pair of an ordered activity list.

    Only neighbours are compared (O(n)). A pair is scored when the sources
    differ, the records are less than 24 h apart, the later record has not
    already been resolved and the earlier one has not been merged away.

    Args:
        activities: Activities ordered by (start_time, id)
        include_low: Also surface LOW tier pairs

    Returns:
        Candidate pairs in walk order
    """
    candidates: list[CandidatePair] = []
    for previous, current in zip(activities, activities[1:]):
        if previous.source == current.source:
            continue
        if abs(current.start_time - previous.start_time) >= PAIR_MAX_SEPARATION:
            continue
        if not _can_be_flagged(current) or not _can_be_matched(previous):
            continue

        result = score_pair(ActivityFacts.from_activity(previous), ActivityFacts.from_activity(current))
        if not result.is_surfaced(include_low=include_low):
            logger.trace(
                "[MERGE_SCAN] Pair not surfaced",
                activity_id=current.id,
                match_activity_id=previous.id,
                tier=result.tier.value,
                reject_reason=result.reject_reason,
            )
            continue

        candidates.append(CandidatePair(activity_id=current.id, match_activity_id=previous.id, result=result))
    return candidates


def _default_session_factory() -> AbstractContextManager[Session]:
    from activity_merge.db.session import get_session

    return get_session()


class CandidateScanner:
    """Finds merge candidates for one owner over a time window.

    Collaborators are injected so a scan can run against any session source
    and be cancelled from another thread.
    """

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        max_workers: int | None = None,
        include_low: bool | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._session_factory = session_factory or _default_session_factory
        self._max_workers = max(1, max_workers if max_workers is not None else settings.merge_scan_max_workers)
        self._include_low = settings.merge_include_low_confidence if include_low is None else include_low
        self._cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        """Stop the scan before its next chunk starts. Chunks already committed stay committed."""
        self._cancel_event.set()

    def scan(self, owner_id: str, window: ScanWindow) -> ScanResult:
        """Compute candidates without writing anything."""
        return self._run(owner_id, window, persist=False)

    def scan_and_flag(self, owner_id: str, window: ScanWindow) -> ScanResult:
        """Compute candidates and persist them as merge flags, committing per chunk."""
        return self._run(owner_id, window, persist=True)

    def _run(self, owner_id: str, window: ScanWindow, persist: bool) -> ScanResult:
        chunks = month_chunks(window)
        logger.info(
            f"[MERGE_SCAN] Scanning {len(chunks)} chunk(s) for owner_id={owner_id} "
            f"window={window.start.isoformat()}..{window.end.isoformat()} persist={persist}"
        )

        outcomes: list[tuple[list[CandidatePair], int] | BaseException | None]
        if self._max_workers == 1 or len(chunks) <= 1:
            outcomes = [self._guarded_chunk(owner_id, chunk, persist) for chunk in chunks]
        else:
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, len(chunks)),
                thread_name_prefix="merge-scan",
            ) as executor:
                futures = [executor.submit(self._guarded_chunk, owner_id, chunk, persist) for chunk in chunks]
                outcomes = [future.result() for future in futures]

        result = ScanResult()
        for chunk, outcome in zip(chunks, outcomes):
            if outcome is None:
                result.cancelled = True
                continue
            if isinstance(outcome, BaseException):
                result.failed_chunks.append(chunk)
                continue
            candidates, flagged = outcome
            result.candidates.extend(candidates)
            result.flagged += flagged
            result.chunks_processed += 1

        logger.info(
            f"[MERGE_SCAN] Finished owner_id={owner_id}: candidates={len(result.candidates)} "
            f"flagged={result.flagged} failed_chunks={len(result.failed_chunks)} cancelled={result.cancelled}"
        )
        return result

    def _guarded_chunk(
        self,
        owner_id: str,
        chunk: ScanWindow,
        persist: bool,
    ) -> tuple[list[CandidatePair], int] | Exception | None:
        """Run one chunk. Returns None when cancelled and the exception when it failed."""
        if self._cancel_event.is_set():
            logger.info(f"[MERGE_SCAN] Cancelled before chunk {chunk.start.isoformat()} for owner_id={owner_id}")
            return None
        try:
            return self._process_chunk(owner_id, chunk, persist)
        except Exception as e:
            logger.exception(
                f"[MERGE_SCAN] Chunk {chunk.start.isoformat()}..{chunk.end.isoformat()} failed for owner_id={owner_id}: {e}"
            )
            return e

    def _process_chunk(self, owner_id: str, chunk: ScanWindow, persist: bool) -> tuple[list[CandidatePair], int]:
        with self._session_factory() as session:
            activities = list_activities_in_window(session, owner_id, chunk.start, chunk.end)
            candidates = find_adjacent_candidates(activities, include_low=self._include_low)

            if not persist or not candidates:
                return candidates, 0

            by_id = {activity.id: activity for activity in activities}
            for candidate in candidates:
                upsert_merge_candidate(session, owner_id, candidate.activity_id, candidate.to_payload())
                by_id[candidate.activity_id].merge_status = MergeStatus.PENDING_REVIEW.value
            session.commit()

            logger.debug(
                f"[MERGE_SCAN] Flagged {len(candidates)} activities in chunk {chunk.start.isoformat()}",
                owner_id=owner_id,
            )
            return candidates, len(candidates)
