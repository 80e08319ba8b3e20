"""Storage access for the scheduling core."""

from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from dental_scheduler.config import settings
from dental_scheduler.core.domain import (
    OCCUPYING_STATUSES,
    Appointment,
    AvailabilityWindow,
    Booking,
    StatusHistoryEntry,
)
from dental_scheduler.core.exceptions import ConcurrentModification
from dental_scheduler.core.redis_client import CacheManager
from dental_scheduler.models.appointments import appointments
from dental_scheduler.models.availability import availability_windows
from dental_scheduler.models.status_history import appointment_status_history
from dental_scheduler.schemas.appointments import AppointmentFilters

logger = structlog.get_logger(__name__)

# exclusion_violation, serialization_failure, deadlock_detected
CONTENTION_SQLSTATES = frozenset({"23P01", "40001", "40P01"})


class SchedulingRepository(Protocol):
    """Storage operations the scheduling core depends on."""

    async def get_availability(self, practitioner_id: UUID) -> list[AvailabilityWindow]: ...

    async def replace_availability(
        self, practitioner_id: UUID, windows: list[AvailabilityWindow]
    ) -> list[AvailabilityWindow]: ...

    async def get_occupying_bookings(
        self,
        practitioner_id: UUID,
        range_start: datetime,
        range_end: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> list[Booking]: ...

    async def load_appointment(self, appointment_id: UUID) -> Appointment | None: ...

    async def insert_appointment_and_history(
        self, appointment: Appointment, entry: StatusHistoryEntry
    ) -> Appointment: ...

    async def commit_appointment_and_history(
        self, appointment: Appointment, entry: StatusHistoryEntry, expected_version: int
    ) -> Appointment: ...

    async def update_practitioner_note(
        self, appointment_id: UUID, note: str | None
    ) -> Appointment | None: ...

    async def list_history(self, appointment_id: UUID) -> list[StatusHistoryEntry]: ...

    async def list_appointments(
        self, filters: AppointmentFilters
    ) -> tuple[int, list[Appointment]]: ...


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is None and orig is not None and orig.__cause__ is not None:
        code = getattr(orig.__cause__, "sqlstate", None)
    return code


def is_contention_error(exc: DBAPIError) -> bool:
    """Check whether a database error means a concurrent writer won."""
    return _sqlstate(exc) in CONTENTION_SQLSTATES


def _appointment_values(appointment: Appointment) -> dict[str, Any]:
    values = appointment.model_dump()
    values["status"] = appointment.status.value
    values["source"] = appointment.source.value
    return values


def _history_values(entry: StatusHistoryEntry) -> dict[str, Any]:
    values = entry.model_dump()
    values["status"] = entry.status.value
    values["previous_status"] = entry.previous_status.value if entry.previous_status else None
    values["changed_by_role"] = entry.changed_by_role.value
    return values


class PostgresSchedulingRepository:
    """SchedulingRepository backed by PostgreSQL through SQLAlchemy Core."""

    def __init__(self, db: AsyncSession, cache_manager: CacheManager | None = None):
        """Initialize repository with database session and optional cache."""
        self.db = db
        self.cache = cache_manager

    @staticmethod
    def _availability_cache_key(practitioner_id: UUID) -> str:
        """Generate cache key for a practitioner's availability."""
        return f"availability:{practitioner_id}"

    async def get_availability(self, practitioner_id: UUID) -> list[AvailabilityWindow]:
        """Get a practitioner's weekly windows, via the cache when available."""
        cache_key = self._availability_cache_key(practitioner_id)
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached is not None:
                return [AvailabilityWindow.model_validate(item) for item in cached]

        stmt = select(
            availability_windows.c.weekday,
            availability_windows.c.start_time,
            availability_windows.c.end_time,
            availability_windows.c.enabled,
        ).where(availability_windows.c.practitioner_id == practitioner_id)
        result = await self.db.execute(stmt)
        windows = [AvailabilityWindow.model_validate(dict(row)) for row in result.mappings()]

        if self.cache:
            self.cache.set_json(
                cache_key,
                [window.model_dump(mode="json") for window in windows],
                ttl=settings.availability_cache_ttl_seconds,
            )

        return windows

    async def replace_availability(
        self, practitioner_id: UUID, windows: list[AvailabilityWindow]
    ) -> list[AvailabilityWindow]:
        """Replace all weekly windows of a practitioner in one transaction."""
        try:
            await self.db.execute(
                delete(availability_windows).where(
                    availability_windows.c.practitioner_id == practitioner_id
                )
            )
            if windows:
                await self.db.execute(
                    insert(availability_windows),
                    [
                        {
                            "practitioner_id": practitioner_id,
                            "weekday": window.weekday.value,
                            "start_time": window.start_time,
                            "end_time": window.end_time,
                            "enabled": window.enabled,
                        }
                        for window in windows
                    ],
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if self.cache:
            self.cache.delete(self._availability_cache_key(practitioner_id))

        return windows

    async def get_occupying_bookings(
        self,
        practitioner_id: UUID,
        range_start: datetime,
        range_end: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> list[Booking]:
        """Get committed bookings of a practitioner that intersect a time range."""
        conditions = [
            appointments.c.practitioner_id == practitioner_id,
            appointments.c.status.in_([status.value for status in OCCUPYING_STATUSES]),
            appointments.c.booked_start < range_end,
            appointments.c.booked_end > range_start,
        ]
        if exclude_appointment_id is not None:
            conditions.append(appointments.c.id != exclude_appointment_id)

        stmt = (
            select(
                appointments.c.id,
                appointments.c.booked_start,
                appointments.c.booked_end,
            )
            .where(and_(*conditions))
            .order_by(appointments.c.booked_start)
        )
        result = await self.db.execute(stmt)
        return [
            Booking(appointment_id=row.id, start=row.booked_start, end=row.booked_end)
            for row in result
        ]

    async def load_appointment(self, appointment_id: UUID) -> Appointment | None:
        """Get an appointment by ID."""
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        if row is None:
            return None
        return Appointment.model_validate(dict(row))

    async def insert_appointment_and_history(
        self, appointment: Appointment, entry: StatusHistoryEntry
    ) -> Appointment:
        """
        Insert a new appointment with its creation history entry.

        Raises:
            ConcurrentModification: If the booked window was taken meanwhile
        """
        try:
            result = await self.db.execute(
                insert(appointments).values(**_appointment_values(appointment)).returning(
                    appointments
                )
            )
            row = result.mappings().one()
            await self.db.execute(
                insert(appointment_status_history).values(**_history_values(entry))
            )
            await self.db.commit()
        except DBAPIError as e:
            await self.db.rollback()
            if is_contention_error(e):
                logger.info(
                    "concurrent_modification_detected",
                    appointment_id=str(appointment.id),
                    sqlstate=_sqlstate(e),
                )
                raise ConcurrentModification(appointment.id) from e
            raise

        return Appointment.model_validate(dict(row))

    async def commit_appointment_and_history(
        self, appointment: Appointment, entry: StatusHistoryEntry, expected_version: int
    ) -> Appointment:
        """
        Write an appointment update and its history entry atomically.

        The update only applies if the stored version still equals
        ``expected_version``; the version is then incremented.

        Raises:
            ConcurrentModification: If another writer changed the row or took the slot
        """
        values = _appointment_values(appointment)
        values.pop("id")
        values.pop("created_at")
        values["version"] = expected_version + 1

        try:
            result = await self.db.execute(
                update(appointments)
                .where(
                    and_(
                        appointments.c.id == appointment.id,
                        appointments.c.version == expected_version,
                    )
                )
                .values(**values)
                .returning(appointments)
            )
            row = result.mappings().first()
            if row is None:
                await self.db.rollback()
                logger.info(
                    "concurrent_modification_detected",
                    appointment_id=str(appointment.id),
                    expected_version=expected_version,
                )
                raise ConcurrentModification(appointment.id)

            await self.db.execute(
                insert(appointment_status_history).values(**_history_values(entry))
            )
            await self.db.commit()
        except DBAPIError as e:
            await self.db.rollback()
            if is_contention_error(e):
                logger.info(
                    "concurrent_modification_detected",
                    appointment_id=str(appointment.id),
                    sqlstate=_sqlstate(e),
                )
                raise ConcurrentModification(appointment.id) from e
            raise

        return Appointment.model_validate(dict(row))

    async def update_practitioner_note(
        self, appointment_id: UUID, note: str | None
    ) -> Appointment | None:
        """Set the practitioner-only note; not a status transition."""
        try:
            result = await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(practitioner_note=note, updated_at=datetime.now(UTC))
                .returning(appointments)
            )
            row = result.mappings().first()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if row is None:
            return None
        return Appointment.model_validate(dict(row))

    async def list_history(self, appointment_id: UUID) -> list[StatusHistoryEntry]:
        """Get history entries in insertion (ascending) order."""
        stmt = (
            select(appointment_status_history)
            .where(appointment_status_history.c.appointment_id == appointment_id)
            .order_by(appointment_status_history.c.changed_at.asc())
        )
        result = await self.db.execute(stmt)
        return [StatusHistoryEntry.model_validate(dict(row)) for row in result.mappings()]

    async def list_appointments(
        self, filters: AppointmentFilters
    ) -> tuple[int, list[Appointment]]:
        """List appointments with filtering and pagination."""
        conditions = []

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.practitioner_id:
            conditions.append(appointments.c.practitioner_id == filters.practitioner_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        # Order and range-filter by the earliest known time of the appointment
        sort_time = func.coalesce(
            appointments.c.booked_start,
            appointments.c.proposed_start,
            appointments.c.requested_start,
        )

        if filters.from_date:
            conditions.append(sort_time >= filters.from_date)

        if filters.to_date:
            conditions.append(sort_time <= filters.to_date)

        count_stmt = select(func.count()).select_from(appointments).where(and_(True, *conditions))
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            select(appointments)
            .where(and_(True, *conditions))
            .order_by(sort_time.desc())
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        items = [Appointment.model_validate(dict(row)) for row in result.mappings()]

        return total, items
