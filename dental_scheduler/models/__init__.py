"""Database models."""

from dental_scheduler.models.appointments import appointments, metadata
from dental_scheduler.models.availability import availability_windows
from dental_scheduler.models.status_history import appointment_status_history

__all__ = [
    "appointment_status_history",
    "appointments",
    "availability_windows",
    "metadata",
]
