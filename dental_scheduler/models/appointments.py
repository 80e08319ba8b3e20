"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID, ExcludeConstraint

# Metadata for all scheduling tables
metadata = MetaData()

OCCUPYING_STATUS_SQL = "status IN ('booked', 'arrived', 'ongoing', 'completed')"

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    # References (owned by the patient/practitioner records services)
    Column("patient_id", UUID(as_uuid=True), nullable=False),
    Column("practitioner_id", UUID(as_uuid=True), nullable=False),
    # Time windows; which one is authoritative depends on status
    Column("requested_start", TIMESTAMP(timezone=True), nullable=True),
    Column("proposed_start", TIMESTAMP(timezone=True), nullable=True),
    Column("proposed_end", TIMESTAMP(timezone=True), nullable=True),
    Column("booked_start", TIMESTAMP(timezone=True), nullable=True),
    Column("booked_end", TIMESTAMP(timezone=True), nullable=True),
    # Status management
    Column("status", Text, nullable=False, server_default="requested"),
    Column("concern", Text, nullable=False),
    Column("practitioner_note", Text, nullable=True),
    Column("source", Text, nullable=False, server_default="patient_app"),
    # Optimistic concurrency token
    Column("version", Integer, nullable=False, server_default=text("1")),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column(
        "status_changed_at",
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("NOW()"),
    ),
    # Constraints
    CheckConstraint(
        "status IN ('requested', 'proposed', 'booked', 'arrived', 'ongoing', "
        "'completed', 'cancelled', 'rejected')",
        name="appointments_status_check",
    ),
    CheckConstraint("source IN ('patient_app', 'walk_in')", name="appointments_source_check"),
    CheckConstraint(
        "booked_start IS NULL OR booked_end IS NULL OR booked_end > booked_start",
        name="appointments_booked_window_check",
    ),
    CheckConstraint(
        "proposed_start IS NULL OR proposed_end IS NULL OR proposed_end > proposed_start",
        name="appointments_proposed_window_check",
    ),
    CheckConstraint(
        f"NOT ({OCCUPYING_STATUS_SQL}) OR (booked_start IS NOT NULL AND booked_end IS NOT NULL)",
        name="appointments_occupying_has_window_check",
    ),
)

# No two time-occupying appointments of one practitioner may overlap.
# Requires the btree_gist extension for the UUID equality operator.
appointments.append_constraint(
    ExcludeConstraint(
        (appointments.c.practitioner_id, "="),
        (
            func.tstzrange(appointments.c.booked_start, appointments.c.booked_end, text("'[)'")),
            "&&",
        ),
        name="appointments_no_double_booking",
        using="gist",
        where=text(OCCUPYING_STATUS_SQL),
    )
)

Index("idx_appointments_patient_id", appointments.c.patient_id)
Index(
    "idx_appointments_practitioner_booked",
    appointments.c.practitioner_id,
    appointments.c.booked_start,
)
Index("idx_appointments_status", appointments.c.status)
