"""Appointment schemas for request/response validation."""

from datetime import datetime, time
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from dental_scheduler.core.domain import (
    ActorRole,
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    SlotCandidate,
    StatusHistoryEntry,
)
from dental_scheduler.core.slots import SlotDecision
from dental_scheduler.core.state_machine import Trigger


class SchedulingFlow(str, Enum):
    """Call site a slot is being validated for; each has its own minimum duration."""

    WALK_IN = "walk_in"
    RESCHEDULE = "reschedule"


class AppointmentRequestCreate(BaseModel):
    """Schema for a patient requesting an appointment."""

    practitioner_id: UUID
    requested_start: datetime
    concern: str = Field(..., max_length=500)


class WalkInCreate(BaseModel):
    """Schema for staff booking a walk-in patient directly."""

    patient_id: UUID
    practitioner_id: UUID
    candidate: SlotCandidate
    concern: str = Field(..., max_length=500)


class RescheduleRequest(BaseModel):
    """Schema for proposing or moving an appointment time."""

    candidate: SlotCandidate
    note: str | None = Field(None, max_length=1000)
    feedback: str | None = Field(None, max_length=1000)
    expected_version: int | None = Field(None, ge=1)


class TransitionRequest(BaseModel):
    """Schema for applying a status trigger."""

    trigger: Trigger
    note: str | None = Field(None, max_length=1000)
    feedback: str | None = Field(None, max_length=1000)
    candidate: SlotCandidate | None = None
    end_time: time | None = Field(
        None,
        description="End time on the requested day, used when approving a request",
    )
    expected_version: int | None = Field(None, ge=1)

    @field_validator("end_time")
    @classmethod
    def validate_end_time(cls, v: time | None) -> time | None:
        """Validate end time is clinic-local wall-clock."""
        if v is not None and v.tzinfo is not None:
            raise ValueError("End time must not carry a UTC offset")
        return v


class PractitionerNoteUpdate(BaseModel):
    """Schema for editing the practitioner-only note."""

    practitioner_note: str | None = Field(None, max_length=2000)


class SlotValidationRequest(BaseModel):
    """Schema for a standalone slot check."""

    candidate: SlotCandidate
    exclude_appointment_id: UUID | None = None
    flow: SchedulingFlow = SchedulingFlow.RESCHEDULE


SlotValidationResponse = SlotDecision


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    practitioner_id: UUID
    status: AppointmentStatus
    concern: str
    requested_start: datetime | None = None
    proposed_start: datetime | None = None
    proposed_end: datetime | None = None
    booked_start: datetime | None = None
    booked_end: datetime | None = None
    practitioner_note: str | None = None
    source: AppointmentSource
    version: int
    created_at: datetime
    updated_at: datetime
    status_changed_at: datetime
    allowed_actions: list[Trigger] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @classmethod
    def for_viewer(
        cls, appointment: Appointment, role: ActorRole, allowed_actions: list[Trigger]
    ) -> "AppointmentResponse":
        """Build a response, hiding the practitioner-only note from patients."""
        data = appointment.model_dump()
        if role == ActorRole.PATIENT:
            data["practitioner_note"] = None
        return cls(**data, allowed_actions=allowed_actions)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    patient_id: UUID | None = None
    practitioner_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class StatusHistoryEntryResponse(BaseModel):
    """Schema for one status history entry."""

    id: UUID
    appointment_id: UUID
    status: AppointmentStatus
    previous_status: AppointmentStatus | None = None
    trigger: str
    changed_at: datetime
    changed_by_user_id: UUID
    changed_by_role: ActorRole
    note: str | None = None
    feedback: str | None = None

    @classmethod
    def from_entry(cls, entry: StatusHistoryEntry) -> "StatusHistoryEntryResponse":
        return cls(**entry.model_dump())


class StatusHistoryResponse(BaseModel):
    """Schema for an appointment's history, newest first."""

    appointment_id: UUID
    items: list[StatusHistoryEntryResponse]


class TransitionResponse(BaseModel):
    """Schema for the outcome of a scheduling operation."""

    appointment: AppointmentResponse
    history_entry: StatusHistoryEntryResponse
