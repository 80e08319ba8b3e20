"""Status history recording."""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from dental_scheduler.core.domain import Actor, AppointmentStatus, StatusHistoryEntry


def utc_now() -> datetime:
    """Get the current UTC time."""
    return datetime.now(UTC)


class StatusHistoryRecorder:
    """Builds the append-only audit entry written with every status change."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        """Initialize recorder with a clock returning aware datetimes."""
        self.clock = clock

    def record(
        self,
        appointment_id: UUID,
        new_status: AppointmentStatus,
        trigger: str,
        actor: Actor,
        *,
        previous_status: AppointmentStatus | None = None,
        last_changed_at: datetime | None = None,
        note: str | None = None,
        feedback: str | None = None,
    ) -> StatusHistoryEntry:
        """
        Build a history entry for a transition.

        The entry must be persisted in the same transaction as the status write.

        Args:
            appointment_id: Appointment being transitioned
            new_status: Status entered
            trigger: Trigger that caused the transition
            actor: User performing the transition
            previous_status: Status left, None on creation
            last_changed_at: Timestamp of the previous entry, if any
            note: Internal note (mandatory for cancel/reject, checked upstream)
            feedback: Patient-visible feedback

        Returns:
            New history entry
        """
        changed_at = self.clock()
        # Entries for one appointment are strictly increasing in time.
        if last_changed_at is not None and changed_at <= last_changed_at:
            changed_at = last_changed_at + timedelta(microseconds=1)

        return StatusHistoryEntry(
            id=uuid4(),
            appointment_id=appointment_id,
            status=new_status,
            previous_status=previous_status,
            trigger=trigger,
            changed_at=changed_at,
            changed_by_user_id=actor.user_id,
            changed_by_role=actor.role,
            note=_clean(note),
            feedback=_clean(feedback),
        )


def newest_first(entries: Iterable[StatusHistoryEntry]) -> list[StatusHistoryEntry]:
    """Order entries for display, most recent first."""
    return sorted(entries, key=lambda entry: entry.changed_at, reverse=True)


def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    text = text.strip()
    return text or None
