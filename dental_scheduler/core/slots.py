"""
Slot validation.

A single pure function decides whether a candidate slot is bookable for a
practitioner. Every flow (patient request, proposal, reschedule, walk-in)
calls it with its own SlotRules, so the rules cannot drift between call
sites. The storage-layer exclusion constraint remains the source of truth
for double-booking; this check gives the caller an early, readable answer.
"""

from collections.abc import Iterable
from datetime import datetime, time, timedelta, tzinfo
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from dental_scheduler.core.domain import AvailabilityWindow, Booking, SlotCandidate
from dental_scheduler.core.exceptions import SlotRejected


class SlotRules(BaseModel):
    """Per-call-site validation parameters."""

    model_config = ConfigDict(frozen=True)

    min_duration_minutes: int = Field(..., gt=0)
    booking_horizon_days: int | None = Field(default=None, gt=0)


class SlotRejectionCode(str, Enum):
    """Stable identifiers for rejection reasons."""

    END_BEFORE_START = "end_before_start"
    DURATION_BELOW_MINIMUM = "duration_below_minimum"
    NO_AVAILABILITY = "no_availability"
    OUTSIDE_WORKING_HOURS = "outside_working_hours"
    CONFLICT = "conflict"
    IN_PAST = "in_past"
    BEYOND_HORIZON = "beyond_horizon"


class SlotDecision(BaseModel):
    """Accept, or reject with a human-readable reason."""

    model_config = ConfigDict(frozen=True)

    accepted: bool
    code: SlotRejectionCode | None = None
    reason: str | None = None
    conflicting_appointment_id: UUID | None = None

    @classmethod
    def accept(cls) -> "SlotDecision":
        return cls(accepted=True)

    @classmethod
    def reject(
        cls,
        code: SlotRejectionCode,
        reason: str,
        conflicting_appointment_id: UUID | None = None,
    ) -> "SlotDecision":
        return cls(
            accepted=False,
            code=code,
            reason=reason,
            conflicting_appointment_id=conflicting_appointment_id,
        )

    def raise_for_rejection(self) -> None:
        """Raise SlotRejected if the slot was not accepted."""
        if not self.accepted:
            raise SlotRejected(self.reason or "Slot rejected", code=self.code.value)


def _hhmm(value: time | datetime) -> str:
    return value.strftime("%H:%M")


def find_window(
    availability: Iterable[AvailabilityWindow], candidate: SlotCandidate
) -> AvailabilityWindow | None:
    """Get the enabled availability window for the candidate's weekday."""
    for window in availability:
        if window.weekday == candidate.weekday and window.enabled:
            return window
    return None


def validate_slot(
    candidate: SlotCandidate,
    availability: Iterable[AvailabilityWindow],
    existing_bookings: Iterable[Booking],
    rules: SlotRules,
    *,
    now: datetime,
    tz: tzinfo,
    exclude_appointment_id: UUID | None = None,
) -> SlotDecision:
    """
    Decide whether a candidate slot can be booked.

    Rules are applied in order and the first failure wins:
    end after start, minimum duration, within the weekday's working hours,
    no overlap with another booking that day, not in the past, and (when
    configured) not beyond the booking horizon.

    Args:
        candidate: Day plus local start/end times
        availability: Practitioner's weekly windows
        existing_bookings: Committed bookings for the practitioner
        rules: Minimum duration and optional horizon for this call site
        now: Current instant (timezone-aware)
        tz: Practitioner's local timezone
        exclude_appointment_id: Appointment being rescheduled, ignored for overlap

    Returns:
        SlotDecision
    """
    # 1. End after start
    if candidate.end <= candidate.start:
        return SlotDecision.reject(
            SlotRejectionCode.END_BEFORE_START,
            "End time must be after start time",
        )

    # 2. Minimum duration
    if candidate.duration < timedelta(minutes=rules.min_duration_minutes):
        return SlotDecision.reject(
            SlotRejectionCode.DURATION_BELOW_MINIMUM,
            f"Duration below minimum of {rules.min_duration_minutes} minutes",
        )

    # 3. Within working hours
    window = find_window(availability, candidate)
    if window is None:
        return SlotDecision.reject(
            SlotRejectionCode.NO_AVAILABILITY,
            f"No availability that day ({candidate.weekday.value.capitalize()})",
        )
    if candidate.start < window.start_time or candidate.end > window.end_time:
        return SlotDecision.reject(
            SlotRejectionCode.OUTSIDE_WORKING_HOURS,
            f"Outside working hours ({_hhmm(window.start_time)} - {_hhmm(window.end_time)})",
        )

    # 4. No overlap, half-open intervals
    start_at = candidate.start_at(tz)
    end_at = candidate.end_at(tz)
    for booking in existing_bookings:
        if exclude_appointment_id is not None and booking.appointment_id == exclude_appointment_id:
            continue
        local_start = booking.start.astimezone(tz)
        if local_start.date() != candidate.day:
            continue
        if start_at < booking.end and end_at > booking.start:
            local_end = booking.end.astimezone(tz)
            return SlotDecision.reject(
                SlotRejectionCode.CONFLICT,
                f"Conflicts with existing appointment ({_hhmm(local_start)} - {_hhmm(local_end)})",
                conflicting_appointment_id=booking.appointment_id,
            )

    # 5. Not in the past
    if start_at < now:
        return SlotDecision.reject(SlotRejectionCode.IN_PAST, "Cannot schedule in the past")

    if rules.booking_horizon_days is not None:
        days_ahead = (candidate.day - now.astimezone(tz).date()).days
        if days_ahead > rules.booking_horizon_days:
            return SlotDecision.reject(
                SlotRejectionCode.BEYOND_HORIZON,
                f"Cannot schedule more than {rules.booking_horizon_days} days ahead",
            )

    return SlotDecision.accept()
