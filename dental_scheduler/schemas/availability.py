"""Availability schemas for request/response validation."""

from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from dental_scheduler.core.domain import AvailabilityWindow


class AvailabilityUpdate(BaseModel):
    """Schema for replacing a practitioner's weekly schedule."""

    windows: list[AvailabilityWindow] = Field(..., max_length=7)

    @field_validator("windows")
    @classmethod
    def validate_unique_weekdays(cls, v: list[AvailabilityWindow]) -> list[AvailabilityWindow]:
        """Validate each weekday appears at most once."""
        weekdays = [window.weekday for window in v]
        if len(weekdays) != len(set(weekdays)):
            raise ValueError("Each weekday may only appear once")
        return v


class AvailabilityResponse(BaseModel):
    """Schema for a practitioner's weekly schedule."""

    practitioner_id: UUID
    windows: list[AvailabilityWindow]
