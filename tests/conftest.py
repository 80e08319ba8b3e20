import os
from collections import defaultdict
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date, datetime, time, timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Keep test runs independent of a developer's .env
os.environ.setdefault("CLINIC_TIMEZONE", "Asia/Manila")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from dental_scheduler.config import settings  # noqa: E402
from dental_scheduler.core.domain import (  # noqa: E402
    Actor,
    ActorRole,
    Appointment,
    AvailabilityWindow,
    Booking,
    SlotCandidate,
    StatusHistoryEntry,
    Weekday,
)
from dental_scheduler.core.exceptions import ConcurrentModification  # noqa: E402
from dental_scheduler.core.security import create_access_token  # noqa: E402
from dental_scheduler.dependencies import (  # noqa: E402
    get_availability_service,
    get_scheduling_repository,
    get_scheduling_service,
)
from dental_scheduler.main import app  # noqa: E402
from dental_scheduler.schemas.appointments import AppointmentFilters  # noqa: E402
from dental_scheduler.services.availability_service import AvailabilityService  # noqa: E402
from dental_scheduler.services.scheduling_service import SchedulingService  # noqa: E402

CLINIC_TZ = settings.clinic_tz

# Monday 2 March 2026, 08:00 clinic time
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=CLINIC_TZ)
TODAY = NOW.date()
NEXT_MONDAY = date(2026, 3, 9)
NEXT_SATURDAY = date(2026, 3, 14)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class InMemorySchedulingRepository:
    """
    SchedulingRepository kept in dictionaries.

    Enforces the same guarantees as the PostgreSQL schema: the version check
    on update and the no-overlap rule for time-occupying appointments.
    """

    def __init__(self) -> None:
        self.availability: dict[UUID, list[AvailabilityWindow]] = {}
        self.appointments: dict[UUID, Appointment] = {}
        self.history: dict[UUID, list[StatusHistoryEntry]] = defaultdict(list)
        # Runs once right before the next write, to simulate a competing writer
        self.before_commit: Callable[[], Awaitable[None]] | None = None

    async def _run_before_commit(self) -> None:
        hook, self.before_commit = self.before_commit, None
        if hook is not None:
            await hook()

    def _check_no_overlap(self, appointment: Appointment) -> None:
        booking = appointment.as_booking()
        if booking is None:
            return
        for other in self.appointments.values():
            if other.id == appointment.id or other.practitioner_id != appointment.practitioner_id:
                continue
            taken = other.as_booking()
            if taken and booking.start < taken.end and booking.end > taken.start:
                raise ConcurrentModification(appointment.id)

    async def get_availability(self, practitioner_id: UUID) -> list[AvailabilityWindow]:
        return list(self.availability.get(practitioner_id, []))

    async def replace_availability(
        self, practitioner_id: UUID, windows: list[AvailabilityWindow]
    ) -> list[AvailabilityWindow]:
        self.availability[practitioner_id] = list(windows)
        return list(windows)

    async def get_occupying_bookings(
        self,
        practitioner_id: UUID,
        range_start: datetime,
        range_end: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> list[Booking]:
        bookings = []
        for appointment in self.appointments.values():
            booking = appointment.as_booking()
            if booking is None or appointment.practitioner_id != practitioner_id:
                continue
            if appointment.id == exclude_appointment_id:
                continue
            if booking.start < range_end and booking.end > range_start:
                bookings.append(booking)
        return sorted(bookings, key=lambda b: b.start)

    async def load_appointment(self, appointment_id: UUID) -> Appointment | None:
        return self.appointments.get(appointment_id)

    async def insert_appointment_and_history(
        self, appointment: Appointment, entry: StatusHistoryEntry
    ) -> Appointment:
        await self._run_before_commit()
        self._check_no_overlap(appointment)
        self.appointments[appointment.id] = appointment
        self.history[appointment.id].append(entry)
        return appointment

    async def commit_appointment_and_history(
        self, appointment: Appointment, entry: StatusHistoryEntry, expected_version: int
    ) -> Appointment:
        await self._run_before_commit()
        stored = self.appointments.get(appointment.id)
        if stored is None or stored.version != expected_version:
            raise ConcurrentModification(appointment.id)
        self._check_no_overlap(appointment)

        saved = appointment.evolve(version=expected_version + 1)
        self.appointments[saved.id] = saved
        self.history[saved.id].append(entry)
        return saved

    async def update_practitioner_note(
        self, appointment_id: UUID, note: str | None
    ) -> Appointment | None:
        stored = self.appointments.get(appointment_id)
        if stored is None:
            return None
        saved = stored.evolve(practitioner_note=note)
        self.appointments[appointment_id] = saved
        return saved

    async def list_history(self, appointment_id: UUID) -> list[StatusHistoryEntry]:
        return list(self.history.get(appointment_id, []))

    async def list_appointments(
        self, filters: AppointmentFilters
    ) -> tuple[int, list[Appointment]]:
        items = [
            a
            for a in self.appointments.values()
            if (filters.patient_id is None or a.patient_id == filters.patient_id)
            and (filters.practitioner_id is None or a.practitioner_id == filters.practitioner_id)
            and (filters.status is None or a.status == filters.status)
        ]
        items.sort(
            key=lambda a: a.booked_start or a.proposed_start or a.requested_start,
            reverse=True,
        )
        offset = (filters.page - 1) * filters.page_size
        return len(items), items[offset : offset + filters.page_size]

    def add_booking(
        self,
        practitioner_id: UUID,
        day: date,
        start: time,
        end: time,
        patient_id: UUID | None = None,
    ) -> Appointment:
        """Store a booked appointment directly, bypassing the scheduling rules."""
        start_at = datetime.combine(day, start, tzinfo=CLINIC_TZ)
        appointment = Appointment(
            id=uuid4(),
            patient_id=patient_id or uuid4(),
            practitioner_id=practitioner_id,
            status="booked",
            concern="Existing booking",
            requested_start=start_at,
            booked_start=start_at,
            booked_end=datetime.combine(day, end, tzinfo=CLINIC_TZ),
            created_at=NOW,
            updated_at=NOW,
            status_changed_at=NOW,
        )
        self.appointments[appointment.id] = appointment
        return appointment


def weekday_hours(start: time = time(9, 0), end: time = time(17, 0)) -> list[AvailabilityWindow]:
    """Monday to Friday working hours, weekends off."""
    windows = [
        AvailabilityWindow(weekday=weekday, start_time=start, end_time=end)
        for weekday in list(Weekday)[:5]
    ]
    windows.append(
        AvailabilityWindow(
            weekday=Weekday.SATURDAY, start_time=time(9, 0), end_time=time(12, 0), enabled=False
        )
    )
    return windows


def slot(day: date, start: str, end: str) -> SlotCandidate:
    return SlotCandidate(day=day, start=time.fromisoformat(start), end=time.fromisoformat(end))


def auth_headers_for(actor: Actor) -> dict:
    """Bearer headers for an actor."""
    token = create_access_token(
        data={"sub": str(actor.user_id), "role": actor.role.value},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def repository() -> InMemorySchedulingRepository:
    return InMemorySchedulingRepository()


@pytest.fixture
def practitioner() -> Actor:
    return Actor(user_id=uuid4(), role=ActorRole.PRACTITIONER)


@pytest.fixture
def other_practitioner() -> Actor:
    return Actor(user_id=uuid4(), role=ActorRole.PRACTITIONER)


@pytest.fixture
def patient() -> Actor:
    return Actor(user_id=uuid4(), role=ActorRole.PATIENT)


@pytest.fixture
def other_patient() -> Actor:
    return Actor(user_id=uuid4(), role=ActorRole.PATIENT)


@pytest.fixture
def staff() -> Actor:
    return Actor(user_id=uuid4(), role=ActorRole.STAFF)


@pytest.fixture
def service(
    repository: InMemorySchedulingRepository, clock: FixedClock, practitioner: Actor
) -> SchedulingService:
    """Scheduling service over the in-memory repository with weekday hours set."""
    repository.availability[practitioner.user_id] = weekday_hours()
    return SchedulingService(repository, clock=clock)


@pytest_asyncio.fixture
async def client(
    repository: InMemorySchedulingRepository,
    service: SchedulingService,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client wired to the in-memory repository."""

    async def override_repository() -> InMemorySchedulingRepository:
        return repository

    async def override_scheduling_service() -> SchedulingService:
        return service

    async def override_availability_service() -> AvailabilityService:
        return AvailabilityService(repository)

    app.dependency_overrides[get_scheduling_repository] = override_repository
    app.dependency_overrides[get_scheduling_service] = override_scheduling_service
    app.dependency_overrides[get_availability_service] = override_availability_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
