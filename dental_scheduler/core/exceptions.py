"""Custom application exceptions."""

from typing import Any
from uuid import UUID


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Structured fields rendered alongside the message."""
        return {}


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


# Scheduling errors. Each one is a distinct, user-surfaceable kind.


class SlotRejected(ConflictException):
    """Candidate slot failed validation; the reason is shown to the user verbatim."""

    def __init__(self, reason: str, code: str):
        """Initialize with the human-readable reason and its stable code."""
        self.reason = reason
        self.code = code
        super().__init__(reason)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "reason": self.reason}


class InvalidTransition(ConflictException):
    """Trigger is not legal from the appointment's current status."""

    def __init__(self, from_status: str, trigger: str):
        """Initialize with the current status and the attempted trigger."""
        self.from_status = from_status
        self.trigger = trigger
        super().__init__(f"Cannot apply '{trigger}' to an appointment that is '{from_status}'")

    def to_dict(self) -> dict[str, Any]:
        return {"from_status": self.from_status, "trigger": self.trigger}


class TransitionForbidden(ForbiddenException):
    """Actor's role (or identity) may not fire this trigger."""

    def __init__(self, role: str, trigger: str, message: str | None = None):
        """Initialize with the actor role and the attempted trigger."""
        self.role = role
        self.trigger = trigger
        super().__init__(message or f"Role '{role}' may not apply '{trigger}'")

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "trigger": self.trigger}


class AppointmentNotFound(NotFoundException):
    """Appointment ID is unknown (stale or bad ID)."""

    def __init__(self, appointment_id: UUID):
        """Initialize with the missing appointment ID."""
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} not found")

    def to_dict(self) -> dict[str, Any]:
        return {"appointment_id": str(self.appointment_id)}


class ConcurrentModification(ConflictException):
    """Another writer committed first; re-validate against fresh data before retrying."""

    def __init__(self, appointment_id: UUID | None = None, message: str | None = None):
        """Initialize with the contended appointment, if known."""
        self.appointment_id = appointment_id
        super().__init__(
            message or "The appointment or its time slot was changed by someone else"
        )

    def to_dict(self) -> dict[str, Any]:
        return {"appointment_id": str(self.appointment_id) if self.appointment_id else None}


class ValidationError(ValidationException):
    """A mandatory field (note, concern, time window) is missing or blank."""

    def __init__(self, field: str, message: str | None = None):
        """Initialize with the offending field name."""
        self.field = field
        super().__init__(message or f"Field '{field}' is required")

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field}
