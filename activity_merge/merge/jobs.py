"""Scheduled duplicate scans for every owner."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from loguru import logger

from activity_merge.activities.store import list_owner_ids
from activity_merge.config.settings import settings
from activity_merge.db.session import get_session
from activity_merge.merge.scanner import CandidateScanner, ScanWindow


def default_scan_window(days: int | None = None, now: datetime | None = None) -> ScanWindow:
    """Window covering the last `days` days up to the end of today (UTC, naive)."""
    days = settings.merge_scan_default_days if days is None else days
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    end = datetime(now.year, now.month, now.day) + timedelta(days=1)
    return ScanWindow(start=end - timedelta(days=days + 1), end=end)


def merge_scan_tick() -> None:
    """Scan recent activities of every owner and flag new merge candidates.

    One owner's failure is logged and does not stop the others.
    """
    window = default_scan_window()
    with get_session() as session:
        owner_ids = list_owner_ids(session, since=window.start)

    logger.info(f"[MERGE_SCAN] Scheduled scan for {len(owner_ids)} owner(s)")
    scanner = CandidateScanner()
    for owner_id in owner_ids:
        try:
            scanner.scan_and_flag(owner_id, window)
        except Exception as e:
            logger.exception(f"[MERGE_SCAN] Scheduled scan failed for owner_id={owner_id}: {e}")
