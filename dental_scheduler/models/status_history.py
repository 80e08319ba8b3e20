"""Append-only appointment status history table."""

from sqlalchemy import Column, ForeignKey, Index, Table, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from dental_scheduler.models.appointments import metadata

appointment_status_history = Table(
    "appointment_status_history",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column(
        "appointment_id",
        UUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column("status", Text, nullable=False),
    Column("previous_status", Text, nullable=True),
    Column("trigger", Text, nullable=False),
    Column("changed_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("changed_by_user_id", UUID(as_uuid=True), nullable=False),
    Column("changed_by_role", Text, nullable=False),
    # Internal note and patient-visible feedback
    Column("note", Text, nullable=True),
    Column("feedback", Text, nullable=True),
)

Index(
    "idx_status_history_appointment_changed",
    appointment_status_history.c.appointment_id,
    appointment_status_history.c.changed_at,
)
