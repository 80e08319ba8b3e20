"""Create availability_windows table.

Revision ID: 001
Revises:
Create Date: 2026-10-05 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Enable pgcrypto extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "availability_windows",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("practitioner_id", postgresql.UUID(), nullable=False),
        sa.Column("weekday", sa.Text(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
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
        sa.CheckConstraint(
            "weekday IN ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', "
            "'saturday', 'sunday')",
            name="availability_windows_weekday_check",
        ),
        sa.CheckConstraint(
            "NOT enabled OR end_time > start_time",
            name="availability_windows_range_check",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "practitioner_id", "weekday", name="uq_availability_practitioner_weekday"
        ),
    )

    op.create_index(
        "ix_availability_windows_practitioner_id", "availability_windows", ["practitioner_id"]
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_availability_windows_practitioner_id", table_name="availability_windows")
    op.drop_table("availability_windows")
