"""Merge review endpoints.

GET  /activities/merge/candidates - pending duplicate pairs for the caller
POST /activities/merge/reject     - keep a flagged activity separate
POST /activities/merge/approve    - merge a flagged activity with its match
POST /activities/merge/scan       - scan a date range and flag new candidates
"""

from __future__ import annotations

from datetime import datetime, time, timedelta

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.orm import Session

from activity_merge.api.dependencies.auth import get_current_user_id
from activity_merge.api.errors import to_http_exception
from activity_merge.api.schemas import MergeActivityRequest, MergeResolutionResponse, MergeScanRequest, MergeScanResponse
from activity_merge.db.session import get_db, get_session_factory
from activity_merge.merge.errors import MergeEngineError
from activity_merge.merge.jobs import default_scan_window
from activity_merge.merge.resolver import accept_candidate, list_pending, reject_candidate
from activity_merge.merge.scanner import CandidateScanner, ScanWindow

router = APIRouter(prefix="/activities/merge", tags=["activities", "merge"])


@router.get("/candidates")
def get_merge_candidates(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_db),
):
    """List activities awaiting duplicate review with their potential matches."""
    try:
        pairs = list_pending(owner_id=user_id, session=session)
    except MergeEngineError as e:
        raise to_http_exception(e) from e

    logger.debug(f"[MERGE] {len(pairs)} pending merge pair(s) for user_id={user_id}")
    return {"pairs": [pair.to_dict() for pair in pairs]}


@router.post("/reject", response_model=MergeResolutionResponse)
def reject_merge(
    request: MergeActivityRequest,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_db),
):
    """Keep a flagged activity separate. Repeating the call is a no-op."""
    logger.info(f"[MERGE] Keep-separate request for activity_id={request.activity_id}, user_id={user_id}")
    try:
        outcome = reject_candidate(activity_id=request.activity_id, owner_id=user_id, session=session)
    except MergeEngineError as e:
        raise to_http_exception(e) from e

    return MergeResolutionResponse(
        activity_id=outcome.activity_id,
        merge_status=outcome.merge_status,
        changed=outcome.changed,
    )


@router.post("/approve", response_model=MergeResolutionResponse)
def approve_merge(
    request: MergeActivityRequest,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_db),
):
    """Merge a flagged activity with its potential match. Repeating the call is a no-op."""
    logger.info(f"[MERGE] Merge request for activity_id={request.activity_id}, user_id={user_id}")
    try:
        outcome = accept_candidate(activity_id=request.activity_id, owner_id=user_id, session=session)
    except MergeEngineError as e:
        raise to_http_exception(e) from e

    return MergeResolutionResponse(
        activity_id=outcome.activity_id,
        merge_status=outcome.merge_status,
        changed=outcome.changed,
    )


def _request_window(request: MergeScanRequest) -> ScanWindow:
    if request.start_date is None and request.end_date is None:
        return default_scan_window()

    default = default_scan_window()
    start = datetime.combine(request.start_date, time.min) if request.start_date else default.start
    end = datetime.combine(request.end_date, time.min) + timedelta(days=1) if request.end_date else default.end
    return ScanWindow(start=start, end=end)


@router.post("/scan", response_model=MergeScanResponse)
def scan_merge_candidates(
    request: MergeScanRequest,
    user_id: str = Depends(get_current_user_id),
    session_factory=Depends(get_session_factory),
):
    """Scan the caller's activities in a date range and flag merge candidates.

    Dates are inclusive. Without dates, the last MERGE_SCAN_DEFAULT_DAYS days are scanned.
    Each month chunk commits on its own; failedChunks lists the ones that did not.
    """
    try:
        window = _request_window(request)
        scanner = CandidateScanner(session_factory=session_factory, include_low=request.include_low)
        result = scanner.scan_and_flag(user_id, window)
    except MergeEngineError as e:
        raise to_http_exception(e) from e

    return MergeScanResponse(
        candidates=len(result.candidates),
        flagged=result.flagged,
        failed_chunks=[chunk.start.isoformat() for chunk in result.failed_chunks],
        cancelled=result.cancelled,
    )
