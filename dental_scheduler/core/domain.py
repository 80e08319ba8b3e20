"""Domain types shared by the slot validator, state machine and orchestrator."""

from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Any, Self
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    REQUESTED = "requested"
    PROPOSED = "proposed"
    BOOKED = "booked"
    ARRIVED = "arrived"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        """Check whether no further transition is permitted."""
        return self in TERMINAL_STATUSES

    @property
    def occupies_time(self) -> bool:
        """Check whether the status reserves time on the practitioner's calendar."""
        return self in OCCUPYING_STATUSES


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED}
)

OCCUPYING_STATUSES = frozenset(
    {
        AppointmentStatus.BOOKED,
        AppointmentStatus.ARRIVED,
        AppointmentStatus.ONGOING,
        AppointmentStatus.COMPLETED,
    }
)


class ActorRole(str, Enum):
    """Who is acting on an appointment."""

    PATIENT = "patient"
    PRACTITIONER = "practitioner"
    STAFF = "staff"


class AppointmentSource(str, Enum):
    """Appointment source enumeration."""

    PATIENT_APP = "patient_app"
    WALK_IN = "walk_in"


class Weekday(str, Enum):
    """Day of the week, as used by recurring availability."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, day: date) -> "Weekday":
        """Get the weekday of a calendar date."""
        return list(cls)[day.weekday()]


class Actor(BaseModel):
    """Authenticated user performing an operation."""

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    role: ActorRole


def _wall_clock(value: time) -> time:
    """Reject times carrying a UTC offset; slot times are clinic-local wall-clock."""
    if value.tzinfo is not None:
        raise ValueError("Time must not carry a UTC offset")
    return value


class AvailabilityWindow(BaseModel):
    """Recurring weekly working window for one weekday."""

    model_config = ConfigDict(frozen=True)

    weekday: Weekday
    start_time: time
    end_time: time
    enabled: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_wall_clock(cls, v: time) -> time:
        return _wall_clock(v)

    @model_validator(mode="after")
    def validate_range(self) -> Self:
        """Validate end time is after start time on enabled days."""
        if self.enabled and self.end_time <= self.start_time:
            raise ValueError("End time must be later than start time")
        return self


class Booking(BaseModel):
    """An existing appointment that occupies time on the practitioner's calendar."""

    model_config = ConfigDict(frozen=True)

    appointment_id: UUID
    start: datetime
    end: datetime


class SlotCandidate(BaseModel):
    """A (day, start, end) tuple in the practitioner's local wall-clock time."""

    model_config = ConfigDict(frozen=True)

    day: date
    start: time
    end: time

    @property
    def weekday(self) -> Weekday:
        return Weekday.of(self.day)

    @field_validator("start", "end")
    @classmethod
    def validate_wall_clock(cls, v: time) -> time:
        return _wall_clock(v)

    @property
    def duration(self) -> timedelta:
        return datetime.combine(self.day, self.end) - datetime.combine(self.day, self.start)

    def start_at(self, tz: tzinfo) -> datetime:
        """Resolve the start to an aware datetime."""
        return datetime.combine(self.day, self.start, tzinfo=tz)

    def end_at(self, tz: tzinfo) -> datetime:
        """Resolve the end to an aware datetime."""
        return datetime.combine(self.day, self.end, tzinfo=tz)

    @classmethod
    def from_datetimes(cls, start: datetime, end: datetime, tz: tzinfo) -> "SlotCandidate":
        """Build a candidate from two instants, read on the start's local day."""
        local_start = start.astimezone(tz)
        local_end = end.astimezone(tz)
        return cls(
            day=local_start.date(),
            start=local_start.time().replace(tzinfo=None),
            end=local_end.time().replace(tzinfo=None),
        )


class Appointment(BaseModel):
    """Appointment record as the scheduling core sees it."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    patient_id: UUID
    practitioner_id: UUID
    status: AppointmentStatus
    concern: str = Field(..., min_length=1)
    requested_start: datetime | None = None
    proposed_start: datetime | None = None
    proposed_end: datetime | None = None
    booked_start: datetime | None = None
    booked_end: datetime | None = None
    practitioner_note: str | None = None
    source: AppointmentSource = AppointmentSource.PATIENT_APP
    version: int = 1
    created_at: datetime
    updated_at: datetime
    status_changed_at: datetime

    @model_validator(mode="after")
    def validate_windows(self) -> Self:
        """Validate proposed and booked windows run forwards."""
        if self.booked_start and self.booked_end and self.booked_end <= self.booked_start:
            raise ValueError("Booked end must be after booked start")
        if self.proposed_start and self.proposed_end and self.proposed_end <= self.proposed_start:
            raise ValueError("Proposed end must be after proposed start")
        if self.status.occupies_time and not (self.booked_start and self.booked_end):
            raise ValueError(f"A {self.status.value} appointment needs a booked window")
        return self

    def evolve(self, **changes: Any) -> "Appointment":
        """Return a validated copy with the given fields replaced."""
        return Appointment.model_validate({**self.model_dump(), **changes})

    def authoritative_window(
        self, default_duration: timedelta
    ) -> tuple[datetime, datetime] | None:
        """
        Get the time window that is authoritative for the current status.

        Args:
            default_duration: Length assumed for a request that only has a start

        Returns:
            (start, end) or None if the appointment has no time at all
        """
        requested = (
            (self.requested_start, self.requested_start + default_duration)
            if self.requested_start
            else None
        )
        proposed = (
            (self.proposed_start, self.proposed_end)
            if self.proposed_start and self.proposed_end
            else None
        )
        booked = (
            (self.booked_start, self.booked_end)
            if self.booked_start and self.booked_end
            else None
        )

        if self.status == AppointmentStatus.REQUESTED:
            return requested
        if self.status == AppointmentStatus.PROPOSED:
            return proposed
        if self.status.occupies_time:
            return booked
        return booked or proposed or requested

    def as_booking(self) -> Booking | None:
        """Get the ledger entry for this appointment if it occupies time."""
        if not self.status.occupies_time:
            return None
        return Booking(appointment_id=self.id, start=self.booked_start, end=self.booked_end)


class StatusHistoryEntry(BaseModel):
    """Immutable audit record of one status transition."""

    model_config = ConfigDict(frozen=True)

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


class TransitionResult(BaseModel):
    """Updated appointment plus the history entry written with it."""

    appointment: Appointment
    history_entry: StatusHistoryEntry
