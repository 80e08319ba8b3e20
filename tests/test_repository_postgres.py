"""
PostgreSQL repository tests.

These need a real database with the btree_gist extension available and run
only when TEST_DATABASE_URL is set. The database is wiped for every test, so
never point it at anything but a throwaway database.
"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, time
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from conftest import CLINIC_TZ, NEXT_MONDAY, NOW, weekday_hours
from dental_scheduler.config import settings
from dental_scheduler.core.domain import (
    Actor,
    ActorRole,
    Appointment,
    AppointmentStatus,
)
from dental_scheduler.core.exceptions import ConcurrentModification
from dental_scheduler.core.history import StatusHistoryRecorder
from dental_scheduler.database import to_async_url
from dental_scheduler.models import metadata
from dental_scheduler.repositories.scheduling_repository import PostgresSchedulingRepository
from dental_scheduler.schemas.appointments import AppointmentFilters

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(
    not TEST_DATABASE_URL or TEST_DATABASE_URL == settings.database_url,
    reason="TEST_DATABASE_URL not set to a separate test database",
)

STAFF = Actor(user_id=uuid4(), role=ActorRole.STAFF)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime.combine(NEXT_MONDAY, time(hour, minute), tzinfo=CLINIC_TZ)


def booked(practitioner_id, start: datetime, end: datetime) -> Appointment:
    return Appointment(
        id=uuid4(),
        patient_id=uuid4(),
        practitioner_id=practitioner_id,
        status=AppointmentStatus.BOOKED,
        concern="Cleaning",
        requested_start=start,
        booked_start=start,
        booked_end=end,
        created_at=NOW,
        updated_at=NOW,
        status_changed_at=NOW,
    )


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a freshly created schema."""
    engine = create_async_engine(to_async_url(TEST_DATABASE_URL), poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "btree_gist"'))
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def repo(db_session: AsyncSession) -> PostgresSchedulingRepository:
    return PostgresSchedulingRepository(db_session)


@pytest.mark.asyncio
async def test_availability_round_trip(repo):
    practitioner_id = uuid4()

    await repo.replace_availability(practitioner_id, weekday_hours())
    windows = await repo.get_availability(practitioner_id)

    assert sorted(windows, key=lambda w: w.weekday.value) == sorted(
        weekday_hours(), key=lambda w: w.weekday.value
    )


@pytest.mark.asyncio
async def test_insert_and_load(repo):
    recorder = StatusHistoryRecorder(lambda: NOW)
    appointment = booked(uuid4(), at(10), at(11))
    entry = recorder.record(appointment.id, appointment.status, "direct_book", STAFF)

    await repo.insert_appointment_and_history(appointment, entry)

    loaded = await repo.load_appointment(appointment.id)
    assert loaded == appointment
    assert await repo.list_history(appointment.id) == [entry]


@pytest.mark.asyncio
async def test_exclusion_constraint_blocks_overlap(repo):
    recorder = StatusHistoryRecorder(lambda: NOW)
    practitioner_id = uuid4()
    first = booked(practitioner_id, at(10), at(11))
    second = booked(practitioner_id, at(10, 30), at(11, 30))

    await repo.insert_appointment_and_history(
        first, recorder.record(first.id, first.status, "direct_book", STAFF)
    )

    with pytest.raises(ConcurrentModification):
        await repo.insert_appointment_and_history(
            second, recorder.record(second.id, second.status, "direct_book", STAFF)
        )

    assert await repo.load_appointment(second.id) is None
    assert await repo.list_history(second.id) == []


@pytest.mark.asyncio
async def test_touching_bookings_are_allowed(repo):
    recorder = StatusHistoryRecorder(lambda: NOW)
    practitioner_id = uuid4()

    for start, end in [(at(10), at(11)), (at(11), at(12))]:
        appointment = booked(practitioner_id, start, end)
        await repo.insert_appointment_and_history(
            appointment, recorder.record(appointment.id, appointment.status, "direct_book", STAFF)
        )

    bookings = await repo.get_occupying_bookings(practitioner_id, at(0), at(23, 59))
    assert len(bookings) == 2


@pytest.mark.asyncio
async def test_stale_version_is_rejected(repo):
    recorder = StatusHistoryRecorder(lambda: NOW)
    appointment = booked(uuid4(), at(10), at(11))
    created = recorder.record(appointment.id, appointment.status, "direct_book", STAFF)
    await repo.insert_appointment_and_history(appointment, created)

    arrived = appointment.evolve(status=AppointmentStatus.ARRIVED)
    entry = recorder.record(
        appointment.id,
        AppointmentStatus.ARRIVED,
        "mark_arrived",
        STAFF,
        previous_status=AppointmentStatus.BOOKED,
        last_changed_at=created.changed_at,
    )
    saved = await repo.commit_appointment_and_history(arrived, entry, expected_version=1)
    assert saved.version == 2

    with pytest.raises(ConcurrentModification):
        await repo.commit_appointment_and_history(arrived, entry, expected_version=1)

    assert len(await repo.list_history(appointment.id)) == 2


@pytest.mark.asyncio
async def test_practitioner_note_keeps_version(repo):
    recorder = StatusHistoryRecorder(lambda: NOW)
    appointment = booked(uuid4(), at(10), at(11))
    await repo.insert_appointment_and_history(
        appointment, recorder.record(appointment.id, appointment.status, "direct_book", STAFF)
    )

    updated = await repo.update_practitioner_note(appointment.id, "Allergic to latex")

    assert updated.practitioner_note == "Allergic to latex"
    assert updated.version == 1


@pytest.mark.asyncio
async def test_list_appointments_filters(repo):
    recorder = StatusHistoryRecorder(lambda: NOW)
    practitioner_id = uuid4()
    for start, end in [(at(9), at(10)), (at(13), at(14))]:
        appointment = booked(practitioner_id, start, end)
        await repo.insert_appointment_and_history(
            appointment, recorder.record(appointment.id, appointment.status, "direct_book", STAFF)
        )

    total, items = await repo.list_appointments(
        AppointmentFilters(practitioner_id=practitioner_id, from_date=at(12))
    )

    assert total == 1
    assert items[0].booked_start == at(13)
