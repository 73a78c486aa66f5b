"""Duplicate-activity match scoring.

Deterministic, side-effect free comparison of two activity records from
different sources. Produces a composite score and a confidence tier:

- Mode: date-only when either start time has no time of day (00:00:00),
  precise otherwise
- Time gate: ≤24 h apart in date-only mode, ≤2 min apart in precise mode
- Distance and duration differences as a percentage of the second record
- score = 100 − minutes×10 − distance%×20 − duration%×10

Date-only pairs cannot be told apart by clock time, so they get a wider
tier ladder keyed on distance. Precise pairs only ever match at HIGH.

No database access. Never raises: a pair that fails a gate is a NO_MATCH
result with a reject_reason.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

DATE_ONLY_MAX_HOURS = 24
PRECISE_MAX_MINUTES = 2

TIME_PENALTY_PER_MINUTE = 10
DISTANCE_PENALTY_PER_PCT = 20
DURATION_PENALTY_PER_PCT = 10


class MatchMode(StrEnum):
    """How precisely the two start times can be compared."""

    DATE_ONLY = "date_only"
    PRECISE = "precise"


class ConfidenceTier(StrEnum):
    """Confidence that two records describe the same workout."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NO_MATCH = "no_match"


SURFACED_TIERS: frozenset[ConfidenceTier] = frozenset({ConfidenceTier.HIGH, ConfidenceTier.MEDIUM})


@dataclass(frozen=True)
class ActivityFacts:
    """The fields of an activity the scorer looks at."""

    source: str
    start_time: datetime
    distance_meters: float | None
    duration_seconds: int | None
    activity_id: int | None = None

    @classmethod
    def from_activity(cls, activity: Any) -> ActivityFacts:
        """Build from any object exposing the activity columns (ORM row, dict-like record)."""
        return cls(
            source=str(activity.source),
            start_time=activity.start_time,
            distance_meters=activity.distance_meters,
            duration_seconds=activity.duration_seconds,
            activity_id=getattr(activity, "id", None),
        )


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing two activities."""

    mode: MatchMode
    score: float
    time_diff_minutes: int
    distance_diff_pct: float
    duration_diff_pct: float
    tier: ConfidenceTier
    reject_reason: str | None = None

    @property
    def is_match(self) -> bool:
        return self.tier is not ConfidenceTier.NO_MATCH

    def is_surfaced(self, include_low: bool = False) -> bool:
        """Whether this pair should become a merge candidate."""
        if self.tier in SURFACED_TIERS:
            return True
        return include_low and self.tier is ConfidenceTier.LOW


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def has_time_of_day(dt: datetime) -> bool:
    """False when the timestamp carries no clock time (hour, minute and second all zero)."""
    return not (dt.hour == 0 and dt.minute == 0 and dt.second == 0)


def select_mode(a: ActivityFacts, b: ActivityFacts) -> MatchMode:
    if has_time_of_day(a.start_time) and has_time_of_day(b.start_time):
        return MatchMode.PRECISE
    return MatchMode.DATE_ONLY


def _no_match(mode: MatchMode, reason: str, time_diff_minutes: int = 0) -> MatchResult:
    return MatchResult(
        mode=mode,
        score=0.0,
        time_diff_minutes=time_diff_minutes,
        distance_diff_pct=0.0,
        duration_diff_pct=0.0,
        tier=ConfidenceTier.NO_MATCH,
        reject_reason=reason,
    )


def classify_tier(
    mode: MatchMode,
    score: float,
    distance_diff_pct: float,
    duration_diff_pct: float,
) -> ConfidenceTier:
    """Map a composite score and its difference percentages to a tier.

    Args:
        mode: Comparison mode of the pair
        score: Composite score
        distance_diff_pct: Distance difference in percent
        duration_diff_pct: Duration difference in percent (0 when unknown)

    Returns:
        Confidence tier
    """
    if mode is MatchMode.DATE_ONLY:
        if score >= 90 and distance_diff_pct <= 5:
            return ConfidenceTier.HIGH
        if score >= 70 and distance_diff_pct <= 1:
            return ConfidenceTier.MEDIUM
        if score >= 50:
            return ConfidenceTier.LOW
        return ConfidenceTier.NO_MATCH

    if score >= 90 and distance_diff_pct <= 0.5 and duration_diff_pct <= 1:
        return ConfidenceTier.HIGH
    return ConfidenceTier.NO_MATCH


def score_pair(a: ActivityFacts, b: ActivityFacts) -> MatchResult:
    """Score whether two activities describe the same workout.

    Percentages are relative to b, the later record of the pair. Missing durations never block a match;
    they are simply left out of the score.

    Args:
        a: Earlier record (the potential match)
        b: Later record (the one that gets flagged)

    Returns:
        MatchResult. tier is NO_MATCH when a gate rejects the pair.
    """
    mode = select_mode(a, b)

    if a.source == b.source:
        return _no_match(mode, "same_source")

    separation_seconds = abs((_to_utc(a.start_time) - _to_utc(b.start_time)).total_seconds())

    if mode is MatchMode.DATE_ONLY:
        if int(separation_seconds // 3600) > DATE_ONLY_MAX_HOURS:
            return _no_match(mode, "outside_time_window")
        time_diff_minutes = 0
    else:
        time_diff_minutes = int(separation_seconds // 60)
        if time_diff_minutes > PRECISE_MAX_MINUTES:
            return _no_match(mode, "outside_time_window", time_diff_minutes)

    if a.distance_meters is None or b.distance_meters is None:
        return _no_match(mode, "missing_distance", time_diff_minutes)
    if b.distance_meters == 0:
        return _no_match(mode, "zero_reference_distance", time_diff_minutes)

    distance_diff_pct = abs(a.distance_meters - b.distance_meters) / b.distance_meters * 100

    has_durations = a.duration_seconds is not None and b.duration_seconds is not None and b.duration_seconds != 0
    duration_diff_pct = abs(a.duration_seconds - b.duration_seconds) / b.duration_seconds * 100 if has_durations else 0.0

    score = 100.0
    score -= time_diff_minutes * TIME_PENALTY_PER_MINUTE
    score -= distance_diff_pct * DISTANCE_PENALTY_PER_PCT
    if has_durations:
        score -= duration_diff_pct * DURATION_PENALTY_PER_PCT

    return MatchResult(
        mode=mode,
        score=score,
        time_diff_minutes=time_diff_minutes,
        distance_diff_pct=distance_diff_pct,
        duration_diff_pct=duration_diff_pct,
        tier=classify_tier(mode, score, distance_diff_pct, duration_diff_pct),
    )
