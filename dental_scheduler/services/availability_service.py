"""Practitioner weekly availability service."""

from uuid import UUID

import structlog

from dental_scheduler.core.domain import Actor, ActorRole, AvailabilityWindow, Weekday
from dental_scheduler.core.exceptions import ForbiddenException
from dental_scheduler.repositories.scheduling_repository import SchedulingRepository

logger = structlog.get_logger(__name__)

_WEEKDAY_ORDER = {weekday: index for index, weekday in enumerate(Weekday)}


def _in_week_order(windows: list[AvailabilityWindow]) -> list[AvailabilityWindow]:
    return sorted(windows, key=lambda window: _WEEKDAY_ORDER[window.weekday])


class AvailabilityService:
    """Service for reading and replacing a practitioner's weekly schedule."""

    def __init__(self, repository: SchedulingRepository):
        """Initialize service with the scheduling repository."""
        self.repository = repository

    async def get_availability(self, practitioner_id: UUID) -> list[AvailabilityWindow]:
        """
        Get a practitioner's weekly windows, Monday first.

        Any authenticated user may read a schedule; patients need it to pick
        a time.
        """
        windows = await self.repository.get_availability(practitioner_id)
        return _in_week_order(windows)

    async def update_availability(
        self,
        practitioner_id: UUID,
        windows: list[AvailabilityWindow],
        actor: Actor,
    ) -> list[AvailabilityWindow]:
        """
        Replace a practitioner's weekly windows.

        Existing bookings are left untouched; the new windows only apply to
        slots validated afterwards.

        Args:
            practitioner_id: Practitioner ID
            windows: New windows, at most one per weekday
            actor: Acting user

        Returns:
            Stored windows

        Raises:
            ForbiddenException: If the actor is not the practitioner or staff
        """
        if actor.role == ActorRole.PATIENT or (
            actor.role == ActorRole.PRACTITIONER and actor.user_id != practitioner_id
        ):
            raise ForbiddenException("Only the practitioner or clinic staff may edit availability")

        stored = await self.repository.replace_availability(practitioner_id, windows)

        logger.info(
            "availability_updated",
            practitioner_id=str(practitioner_id),
            enabled_days=[window.weekday.value for window in stored if window.enabled],
            actor_role=actor.role.value,
        )
        return _in_week_order(stored)
