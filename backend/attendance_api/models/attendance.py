"""
Attendance API — Attendance SQLAlchemy Model
============================================

What:  ORM model for the `attendance_records` table.
How:   Inherits from the shared DeclarativeBase; Alembic reads it for
       migrations. SqlAlchemyRecordStore maps rows to AttendanceRecord
       schemas and back.

Table Design:
    - One row per (user_id, date), enforced by uq_attendance_user_date
    - hourly_logs: JSON list of {hour, activeMinutes, timestamp} (JSONB on
      PostgreSQL); the row is always rewritten as a whole
    - version: optimistic concurrency counter, compared on every UPDATE
    - Timestamps stored in UTC

    Index on (user_id, is_checked_in, date DESC):
        Serves the "most recent open session" lookup used by heartbeat,
        check-out and status.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from attendance_api.database import Base


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column that always round-trips as UTC.

    SQLite drops offsets, PostgreSQL returns values in the session zone;
    both come back as aware UTC datetimes. Naive values are rejected on
    write.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("UTCDateTime requires timezone-aware datetimes")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttendanceRow(Base):
    """
    Persisted attendance record.

    Query Patterns:
        - Today's record: WHERE user_id = :u AND date = :d (unique index)
        - Active session: WHERE user_id = :u AND is_checked_in ORDER BY date DESC LIMIT 1
        - Stats window:   WHERE user_id = :u AND date BETWEEN :a AND :b ORDER BY date DESC
    """

    __tablename__ = "attendance_records"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier",
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Opaque user identifier from the identity gateway",
    )

    # Calendar day in the server's operating timezone
    day: Mapped[date] = mapped_column(
        "date",
        Date,
        nullable=False,
        comment="Calendar day (server timezone)",
    )

    check_in_time: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="First check-in of the day (UTC)",
    )

    check_out_time: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        default=None,
        comment="Most recent check-out (UTC); NULL while checked in",
    )

    hourly_logs: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=list,
        comment="Per-hour activity: [{hour, activeMinutes, timestamp}]",
    )

    total_active_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Sum of hourly_logs activeMinutes",
    )

    is_checked_in: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the session is open",
    )

    last_heartbeat: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        default=None,
        comment="Last heartbeat or check-in (UTC)",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Optimistic concurrency counter",
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        comment="Row creation time (UTC)",
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        comment="Last write time (UTC)",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_attendance_user_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<AttendanceRow(id={self.id}, user_id='{self.user_id}', "
            f"date='{self.day}', is_checked_in={self.is_checked_in})>"
        )


Index(
    "idx_attendance_user_active_date",
    AttendanceRow.user_id,
    AttendanceRow.is_checked_in,
    AttendanceRow.day.desc(),
)
