"""Create appointments table with the no-double-booking exclusion constraint.

Revision ID: 002
Revises: 001
Create Date: 2026-10-05 00:10:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OCCUPYING_STATUS_SQL = "status IN ('booked', 'arrived', 'ongoing', 'completed')"


def upgrade() -> None:
    """Upgrade database schema."""
    # btree_gist provides the = operator for UUIDs inside a GiST index
    op.execute('CREATE EXTENSION IF NOT EXISTS "btree_gist"')

    op.create_table(
        "appointments",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("practitioner_id", postgresql.UUID(), nullable=False),
        sa.Column("requested_start", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("proposed_start", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("proposed_end", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("booked_start", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("booked_end", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("status", sa.Text(), server_default="requested", nullable=False),
        sa.Column("concern", sa.Text(), nullable=False),
        sa.Column("practitioner_note", sa.Text(), nullable=True),
        sa.Column("source", sa.Text(), server_default="patient_app", nullable=False),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "status_changed_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('requested', 'proposed', 'booked', 'arrived', 'ongoing', "
            "'completed', 'cancelled', 'rejected')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "source IN ('patient_app', 'walk_in')", name="appointments_source_check"
        ),
        sa.CheckConstraint(
            "booked_start IS NULL OR booked_end IS NULL OR booked_end > booked_start",
            name="appointments_booked_window_check",
        ),
        sa.CheckConstraint(
            "proposed_start IS NULL OR proposed_end IS NULL OR proposed_end > proposed_start",
            name="appointments_proposed_window_check",
        ),
        sa.CheckConstraint(
            f"NOT ({OCCUPYING_STATUS_SQL}) OR "
            "(booked_start IS NOT NULL AND booked_end IS NOT NULL)",
            name="appointments_occupying_has_window_check",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.execute(
        "ALTER TABLE appointments ADD CONSTRAINT appointments_no_double_booking "
        "EXCLUDE USING gist ("
        "practitioner_id WITH =, "
        "tstzrange(booked_start, booked_end, '[)') WITH &&"
        f") WHERE ({OCCUPYING_STATUS_SQL})"
    )

    op.create_index("idx_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index(
        "idx_appointments_practitioner_booked",
        "appointments",
        ["practitioner_id", "booked_start"],
    )
    op.create_index("idx_appointments_status", "appointments", ["status"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("idx_appointments_status", table_name="appointments")
    op.drop_index("idx_appointments_practitioner_booked", table_name="appointments")
    op.drop_index("idx_appointments_patient_id", table_name="appointments")

    # Dropping the table drops the exclusion constraint with it
    op.drop_table("appointments")
