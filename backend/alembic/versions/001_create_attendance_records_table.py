"""Create attendance_records table

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates the `attendance_records` table: one row per user per day.
How:   UUID primary key, JSONB hourly logs, TIMESTAMP WITH TIME ZONE columns,
       unique (user_id, date) and the active-session index.

Rollback: downgrade() drops the table entirely (all attendance history lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "attendance_records",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
            comment="Unique identifier",
        ),
        sa.Column(
            "user_id",
            sa.String(64),
            nullable=False,
            comment="Opaque user identifier from the identity gateway",
        ),
        sa.Column(
            "date",
            sa.Date(),
            nullable=False,
            comment="Calendar day (server timezone)",
        ),
        sa.Column(
            "check_in_time",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            comment="First check-in of the day (UTC)",
        ),
        sa.Column(
            "check_out_time",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Most recent check-out (UTC); NULL while checked in",
        ),
        sa.Column(
            "hourly_logs",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment="Per-hour activity: [{hour, activeMinutes, timestamp}]",
        ),
        sa.Column(
            "total_active_minutes",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Sum of hourly_logs activeMinutes",
        ),
        sa.Column(
            "is_checked_in",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
            comment="Whether the session is open",
        ),
        sa.Column(
            "last_heartbeat",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Last heartbeat or check-in (UTC)",
        ),
        sa.Column(
            "version",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Optimistic concurrency counter",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="Row creation time (UTC)",
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="Last write time (UTC)",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "date", name="uq_attendance_user_date"),
    )

    # Heartbeat, check-out and status all look up the newest open session
    op.create_index(
        "idx_attendance_user_active_date",
        "attendance_records",
        ["user_id", "is_checked_in", sa.text("date DESC")],
    )


def downgrade() -> None:
    op.drop_index("idx_attendance_user_active_date", table_name="attendance_records")
    op.drop_table("attendance_records")
