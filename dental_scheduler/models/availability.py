"""Practitioner weekly availability table."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Table,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from dental_scheduler.models.appointments import metadata

availability_windows = Table(
    "availability_windows",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("practitioner_id", UUID(as_uuid=True), nullable=False, index=True),
    Column("weekday", Text, nullable=False),
    # Wall-clock times in the clinic timezone
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("enabled", Boolean, nullable=False, server_default=text("true")),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    UniqueConstraint("practitioner_id", "weekday", name="uq_availability_practitioner_weekday"),
    CheckConstraint(
        "weekday IN ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', "
        "'saturday', 'sunday')",
        name="availability_windows_weekday_check",
    ),
    CheckConstraint(
        "NOT enabled OR end_time > start_time",
        name="availability_windows_range_check",
    ),
)
