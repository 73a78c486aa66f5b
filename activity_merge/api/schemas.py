"""API contract schemas for merge review, workout linking and bulk delete.

Request bodies use the camelCase keys the web client sends.
"""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ============================================================================
# Merge review (/activities/merge/*)
# ============================================================================


class MergeActivityRequest(BaseModel):
    """Body of POST /activities/merge/reject and /activities/merge/approve."""

    model_config = ConfigDict(populate_by_name=True)

    activity_id: int = Field(alias="activityId", description="Flagged activity ID")


class MergeScanRequest(BaseModel):
    """Body of POST /activities/merge/scan."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: date | None = Field(default=None, alias="startDate", description="First day to scan (inclusive)")
    end_date: date | None = Field(default=None, alias="endDate", description="Last day to scan (inclusive)")
    include_low: bool | None = Field(default=None, alias="includeLow", description="Also flag LOW confidence pairs")

    @model_validator(mode="after")
    def validate_range(self) -> "MergeScanRequest":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class MergeResolutionResponse(BaseModel):
    success: bool = True
    activity_id: int = Field(serialization_alias="activityId")
    merge_status: str = Field(serialization_alias="mergeStatus")
    changed: bool


class MergeScanResponse(BaseModel):
    success: bool = True
    candidates: int = Field(description="Candidate pairs found")
    flagged: int = Field(description="Merge flags written")
    failed_chunks: list[str] = Field(serialization_alias="failedChunks", description="Start of each month chunk that failed")
    cancelled: bool = False


# ============================================================================
# Workout linking (/activities/link)
# ============================================================================


class LinkWorkoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activity_id: int = Field(alias="activityId")
    workout_id: int = Field(alias="workoutId")
    reason: str | None = Field(default=None, description="Free-text reason stored for audit")


class UnlinkWorkoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activity_id: int = Field(alias="activityId")


# ============================================================================
# Bulk delete (/activities/delete)
# ============================================================================


class DeleteActivitiesRequest(BaseModel):
    ids: list | None = Field(default=None, description="Activity ids to delete; validated by the activity store")
