from __future__ import annotations

from datetime import date, datetime, timezone
from enum import StrEnum

from sqlalchemy import JSON, Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


class ActivitySource(StrEnum):
    """Integration an activity record was ingested from."""

    GARMIN = "garmin"
    STRAVA = "strava"
    MANUAL = "manual"


class MergeStatus(StrEnum):
    """Duplicate-review state of an activity.

    unlinked -> pending_review -> merged | kept_separate
    """

    UNLINKED = "unlinked"
    PENDING_REVIEW = "pending_review"
    KEPT_SEPARATE = "kept_separate"
    MERGED = "merged"


class FlagType(StrEnum):
    """Automated finding attached to an activity."""

    MERGE_CANDIDATE = "merge_candidate"


class CompletionStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    PARTIAL = "partial"
    SKIPPED = "skipped"


class Activity(Base):
    """One real-world workout record ingested from exactly one source.

    Schema:
    - id: Integer primary key
    - owner_id: Athlete that owns the record (every query filters on it)
    - source: Originating integration (garmin, strava, manual)
    - external_id: Record id at the originating source
    - start_time: Start timestamp. Date-only sources store 00:00:00.
    - distance_meters / duration_seconds: Nullable, >= 0
    - merge_status: unlinked | pending_review | kept_separate | merged
    - merged_into_id: Surviving activity when this record was merged away
    - planned_workout_id + match_*: Link to a planned workout (manual linking)

    Constraints:
    - Unique (owner_id, source, external_id) prevents re-ingesting the same record
    - merge_status only changes through the scanner and the merge resolver
    """

    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    source: Mapped[str] = mapped_column(String, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String, nullable=True)
    activity_name: Mapped[str | None] = mapped_column(String, nullable=True)
    activity_type: Mapped[str | None] = mapped_column(String, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    distance_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    merge_status: Mapped[str] = mapped_column(String, nullable=False, default=MergeStatus.UNLINKED.value)
    merged_into_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    planned_workout_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    match_method: Mapped[str | None] = mapped_column(String, nullable=True)
    match_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "source", "external_id", name="uq_activity_owner_source_external_id"),
        Index("idx_activities_owner_start_time", "owner_id", "start_time"),  # Scanner window query
        Index("idx_activities_owner_merge_status", "owner_id", "merge_status"),  # Review queue
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "source": self.source,
            "external_id": self.external_id,
            "activity_name": self.activity_name,
            "activity_type": self.activity_type,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "distance_meters": self.distance_meters,
            "duration_seconds": self.duration_seconds,
            "merge_status": self.merge_status,
            "merged_into_id": self.merged_into_id,
            "planned_workout_id": self.planned_workout_id,
        }


class WorkoutFlag(Base):
    """Annotation produced by an automated detector for one activity.

    flag_data for merge_candidate flags:
    - potential_match_id: Activity this one probably duplicates
    - confidence: high | medium | low
    - confidence_score: Full-precision composite score

    Constraints:
    - Unique (activity_id, flag_type): at most one live flag of each type per activity
    """

    __tablename__ = "workout_flags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    activity_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    flag_type: Mapped[str] = mapped_column(String, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False, default="info")
    flag_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (UniqueConstraint("activity_id", "flag_type", name="uq_workout_flag_activity_type"),)


class PlannedWorkout(Base):
    """Scheduled training-plan entry an activity may be linked to.

    Owned by the training-plan service; this service only sets and clears
    the completion fields through manual linking.
    """

    __tablename__ = "planned_workouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    workout_type: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    distance_target_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    duration_target_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_activity_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    completion_status: Mapped[str] = mapped_column(String, nullable=False, default=CompletionStatus.PENDING.value)
    completion_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class ResolutionDecision(Base):
    """Audit log of human review decisions.

    decision: merge | keep_separate | manual_link | manual_unlink
    """

    __tablename__ = "resolution_decisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    activity_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    match_activity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    planned_workout_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    decision: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
