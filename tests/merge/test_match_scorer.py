"""Unit tests for duplicate-activity match scoring.

Tests cover:
- Mode selection (date-only vs precise)
- Time gates in both modes
- Distance / duration gates and missing values
- Tier ladder boundaries
- The worked date-only example from the product docs
"""

from datetime import datetime, timedelta, timezone

import pytest

from activity_merge.merge.scorer import (
    ActivityFacts,
    ConfidenceTier,
    MatchMode,
    classify_tier,
    has_time_of_day,
    score_pair,
    select_mode,
)


def facts(source, start_time, distance=10000.0, duration=3000):
    return ActivityFacts(source=source, start_time=start_time, distance_meters=distance, duration_seconds=duration)


class TestModeSelection:
    """Date-only vs precise comparisons."""

    def test_midnight_has_no_time_of_day(self):
        assert not has_time_of_day(datetime(2024, 6, 1))
        assert has_time_of_day(datetime(2024, 6, 1, 0, 0, 1))

    def test_either_date_only_start_selects_date_only(self):
        a = facts("garmin", datetime(2024, 6, 1))
        b = facts("strava", datetime(2024, 6, 1, 7, 12))
        assert select_mode(a, b) is MatchMode.DATE_ONLY
        assert select_mode(b, a) is MatchMode.DATE_ONLY

    def test_both_with_clock_time_selects_precise(self):
        a = facts("garmin", datetime(2024, 6, 1, 7, 0))
        b = facts("strava", datetime(2024, 6, 1, 7, 1))
        assert select_mode(a, b) is MatchMode.PRECISE


class TestGates:
    """Pairs rejected before scoring."""

    def test_same_source_never_matches(self):
        start = datetime(2024, 6, 1, 7, 0)
        result = score_pair(facts("strava", start), facts("strava", start))
        assert result.tier is ConfidenceTier.NO_MATCH
        assert result.reject_reason == "same_source"

    def test_precise_pair_three_minutes_apart_is_rejected(self):
        start = datetime(2024, 6, 1, 7, 0)
        result = score_pair(facts("garmin", start + timedelta(minutes=3)), facts("strava", start))
        assert result.tier is ConfidenceTier.NO_MATCH
        assert result.reject_reason == "outside_time_window"
        assert result.time_diff_minutes == 3

    def test_precise_time_difference_is_truncated_to_whole_minutes(self):
        start = datetime(2024, 6, 1, 7, 0)
        result = score_pair(facts("garmin", start + timedelta(minutes=2, seconds=59)), facts("strava", start))
        assert result.reject_reason is None
        assert result.time_diff_minutes == 2

    def test_date_only_pair_more_than_a_day_apart_is_rejected(self):
        result = score_pair(
            facts("garmin", datetime(2024, 6, 1)),
            facts("strava", datetime(2024, 6, 2, 1, 30)),
        )
        assert result.reject_reason == "outside_time_window"

    def test_date_only_pair_exactly_a_day_apart_passes_gate(self):
        result = score_pair(facts("garmin", datetime(2024, 6, 1)), facts("strava", datetime(2024, 6, 2)))
        assert result.reject_reason is None
        assert result.tier is ConfidenceTier.HIGH

    def test_missing_distance_is_rejected(self):
        start = datetime(2024, 6, 1, 7, 0)
        result = score_pair(facts("garmin", start, distance=None), facts("strava", start))
        assert result.reject_reason == "missing_distance"

    def test_zero_reference_distance_is_rejected(self):
        start = datetime(2024, 6, 1, 7, 0)
        result = score_pair(facts("garmin", start), facts("strava", start, distance=0.0))
        assert result.tier is ConfidenceTier.NO_MATCH
        assert result.reject_reason == "zero_reference_distance"

    def test_aware_and_naive_timestamps_compare_as_utc(self):
        naive = datetime(2024, 6, 1, 7, 0)
        aware = datetime(2024, 6, 1, 7, 0, tzinfo=timezone.utc)
        result = score_pair(facts("garmin", naive), facts("strava", aware))
        assert result.time_diff_minutes == 0
        assert result.tier is ConfidenceTier.HIGH


class TestScoring:
    """Composite score and tiers."""

    def test_identical_precise_records_score_100(self):
        start = datetime(2024, 6, 1, 7, 0)
        result = score_pair(facts("garmin", start), facts("strava", start))
        assert result.mode is MatchMode.PRECISE
        assert result.score == pytest.approx(100.0)
        assert result.tier is ConfidenceTier.HIGH
        assert result.is_match

    def test_precise_small_differences_are_high(self):
        start = datetime(2024, 6, 1, 7, 0, 0)
        result = score_pair(
            facts("garmin", start + timedelta(seconds=40), distance=10010.0, duration=3003),
            facts("strava", start, distance=10000.0, duration=3000),
        )
        assert result.time_diff_minutes == 0
        assert result.distance_diff_pct == pytest.approx(0.1)
        assert result.duration_diff_pct == pytest.approx(0.1)
        assert result.score == pytest.approx(97.0)
        assert result.tier is ConfidenceTier.HIGH

    def test_precise_pair_below_high_is_no_match(self):
        start = datetime(2024, 6, 1, 7, 0)
        result = score_pair(
            facts("garmin", start + timedelta(minutes=1), distance=10020.0),
            facts("strava", start),
        )
        assert result.score == pytest.approx(86.0)
        assert result.tier is ConfidenceTier.NO_MATCH
        assert result.reject_reason is None

    def test_missing_duration_is_left_out_of_the_score(self):
        start = datetime(2024, 6, 1, 7, 0)
        result = score_pair(facts("garmin", start, duration=None), facts("strava", start, duration=3600))
        assert result.duration_diff_pct == 0.0
        assert result.score == pytest.approx(100.0)

    def test_zero_reference_duration_is_left_out_of_the_score(self):
        start = datetime(2024, 6, 1, 7, 0)
        result = score_pair(facts("garmin", start, duration=3000), facts("strava", start, duration=0))
        assert result.score == pytest.approx(100.0)

    def test_date_only_worked_example_is_low(self):
        a = facts("garmin", datetime(2024, 6, 1), distance=10000.0, duration=None)
        b = facts("strava", datetime(2024, 6, 1, 7, 12), distance=10120.0, duration=3600)
        result = score_pair(a, b)
        assert result.mode is MatchMode.DATE_ONLY
        assert result.time_diff_minutes == 0
        assert result.distance_diff_pct == pytest.approx(1.1858, abs=1e-3)
        assert result.score == pytest.approx(76.285, abs=0.01)
        assert result.tier is ConfidenceTier.LOW
        assert not result.is_surfaced()
        assert result.is_surfaced(include_low=True)

    def test_scoring_is_deterministic(self):
        a = facts("garmin", datetime(2024, 6, 1, 7, 0, 30), distance=5012.0, duration=1500)
        b = facts("strava", datetime(2024, 6, 1, 7, 1, 10), distance=5000.0, duration=1490)
        assert score_pair(a, b) == score_pair(a, b)


class TestTierLadder:
    """Boundaries of classify_tier."""

    def test_date_only_boundary_is_inclusive(self):
        assert classify_tier(MatchMode.DATE_ONLY, 90.0, 5.0, 0.0) is ConfidenceTier.HIGH

    def test_date_only_distance_just_over_boundary_falls_through(self):
        tier = classify_tier(MatchMode.DATE_ONLY, 90.0, 5.01, 0.0)
        assert tier is not ConfidenceTier.HIGH
        assert tier is ConfidenceTier.LOW

    def test_date_only_medium_needs_tight_distance(self):
        assert classify_tier(MatchMode.DATE_ONLY, 75.0, 1.0, 0.0) is ConfidenceTier.MEDIUM
        assert classify_tier(MatchMode.DATE_ONLY, 75.0, 1.2, 0.0) is ConfidenceTier.LOW

    def test_date_only_below_fifty_is_no_match(self):
        assert classify_tier(MatchMode.DATE_ONLY, 49.9, 0.0, 0.0) is ConfidenceTier.NO_MATCH

    def test_precise_only_matches_at_high(self):
        assert classify_tier(MatchMode.PRECISE, 95.0, 0.5, 1.0) is ConfidenceTier.HIGH
        assert classify_tier(MatchMode.PRECISE, 95.0, 0.51, 0.0) is ConfidenceTier.NO_MATCH
        assert classify_tier(MatchMode.PRECISE, 95.0, 0.0, 1.1) is ConfidenceTier.NO_MATCH
        assert classify_tier(MatchMode.PRECISE, 89.0, 0.0, 0.0) is ConfidenceTier.NO_MATCH
