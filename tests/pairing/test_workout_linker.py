"""Tests for manual activity ↔ planned workout linking.

Tests cover:
- Link sets both sides and computes completion
- Relinking releases previous links on both sides
- Idempotent link / unlink
- Ownership scoping
"""

from datetime import date, datetime

import pytest
from sqlalchemy import select

from activity_merge.db.models import CompletionStatus, ResolutionDecision
from activity_merge.merge.errors import NotFoundError
from activity_merge.pairing.workout_linker import compute_completion, link_workout, unlink_workout


@pytest.fixture
def run(make_activity):
    return make_activity("strava", datetime(2024, 6, 1, 7, 0), distance_meters=10000.0, duration_seconds=3000)


@pytest.fixture
def workout(make_workout):
    return make_workout(date(2024, 6, 1), distance_target_meters=10000.0, duration_target_seconds=3000)


class TestCompletion:
    """Completion status from variance against targets."""

    def test_on_target_is_completed(self, run, workout):
        status, metadata = compute_completion(run, workout)
        assert status is CompletionStatus.COMPLETED
        assert metadata["distance_variance_percent"] == 0.0

    def test_within_half_is_partial(self, make_activity, workout):
        short = make_activity("strava", datetime(2024, 6, 1, 7, 0), distance_meters=7000.0, duration_seconds=2100)
        status, _ = compute_completion(short, workout)
        assert status is CompletionStatus.PARTIAL

    def test_far_off_is_skipped(self, make_activity, workout):
        tiny = make_activity("strava", datetime(2024, 6, 1, 7, 0), distance_meters=2000.0, duration_seconds=600)
        status, _ = compute_completion(tiny, workout)
        assert status is CompletionStatus.SKIPPED


class TestLinkWorkout:
    """Manual link."""

    def test_link_sets_both_sides(self, db_session, run, workout, owner_id):
        outcome = link_workout(
            activity_id=run.id, workout_id=workout.id, owner_id=owner_id, reason="ran it", session=db_session
        )

        assert outcome.changed
        assert run.planned_workout_id == workout.id
        assert run.match_method == "manual"
        assert run.match_confidence == 1.0
        assert run.match_metadata == {"manual_link_reason": "ran it"}
        assert workout.completed_activity_id == run.id
        assert workout.completion_status == CompletionStatus.COMPLETED.value

        decision = db_session.execute(select(ResolutionDecision)).scalar_one()
        assert decision.decision == "manual_link"
        assert decision.planned_workout_id == workout.id

    def test_repeated_link_is_a_no_op(self, db_session, run, workout, owner_id):
        link_workout(activity_id=run.id, workout_id=workout.id, owner_id=owner_id, reason=None, session=db_session)

        outcome = link_workout(
            activity_id=run.id, workout_id=workout.id, owner_id=owner_id, reason=None, session=db_session
        )

        assert not outcome.changed
        assert len(list(db_session.execute(select(ResolutionDecision)).scalars())) == 1

    def test_relink_releases_previous_workout(self, db_session, run, workout, make_workout, owner_id):
        other_workout = make_workout(date(2024, 6, 2), distance_target_meters=10000.0)
        link_workout(activity_id=run.id, workout_id=workout.id, owner_id=owner_id, reason=None, session=db_session)

        link_workout(
            activity_id=run.id, workout_id=other_workout.id, owner_id=owner_id, reason=None, session=db_session
        )

        assert run.planned_workout_id == other_workout.id
        assert workout.completed_activity_id is None
        assert workout.completion_status == CompletionStatus.PENDING.value

    def test_link_takes_workout_from_other_activity(self, db_session, run, workout, make_activity, owner_id):
        other_run = make_activity("garmin", datetime(2024, 6, 1, 18, 0))
        link_workout(
            activity_id=other_run.id, workout_id=workout.id, owner_id=owner_id, reason=None, session=db_session
        )

        link_workout(activity_id=run.id, workout_id=workout.id, owner_id=owner_id, reason=None, session=db_session)

        assert workout.completed_activity_id == run.id
        assert other_run.planned_workout_id is None
        assert other_run.match_method is None

    def test_other_owners_workout_is_not_found(self, db_session, run, make_workout, owner_id):
        foreign = make_workout(date(2024, 6, 1), owner="someone-else")

        with pytest.raises(NotFoundError):
            link_workout(activity_id=run.id, workout_id=foreign.id, owner_id=owner_id, reason=None, session=db_session)

        assert run.planned_workout_id is None
        assert foreign.completed_activity_id is None

    def test_other_owners_activity_is_not_found(self, db_session, run, workout):
        with pytest.raises(NotFoundError):
            link_workout(
                activity_id=run.id, workout_id=workout.id, owner_id="someone-else", reason=None, session=db_session
            )


class TestUnlinkWorkout:
    """Manual unlink."""

    def test_unlink_clears_both_sides(self, db_session, run, workout, owner_id):
        link_workout(activity_id=run.id, workout_id=workout.id, owner_id=owner_id, reason=None, session=db_session)

        outcome = unlink_workout(activity_id=run.id, owner_id=owner_id, session=db_session)

        assert outcome.changed
        assert outcome.planned_workout_id == workout.id
        assert run.planned_workout_id is None
        assert workout.completed_activity_id is None
        assert workout.completion_status == CompletionStatus.PENDING.value

    def test_unlink_of_unlinked_activity_is_a_no_op(self, db_session, run, owner_id):
        outcome = unlink_workout(activity_id=run.id, owner_id=owner_id, session=db_session)
        assert not outcome.changed
        assert db_session.execute(select(ResolutionDecision)).first() is None
