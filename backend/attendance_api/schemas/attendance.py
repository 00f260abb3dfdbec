"""
Attendance API — Pydantic Schemas
=================================

What:  The attendance record, the tracker's result objects and the API
       response envelope.
How:   Fields are snake_case in Python and camelCase on the wire
       (alias generator), matching what the mobile client reads:
       `isCheckedIn`, `totalActiveHours`, `hourlyLogs`, ...
Who:   Produced by AttendanceTracker and the record stores; returned by the
       attendance routes.

The record model is also the unit the RecordStore reads and writes, so it
carries the store's bookkeeping fields (`id`, `version`, timestamps).
"""

import datetime as dt
import uuid
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DataT = TypeVar("DataT")

STATS_PERIODS = ("daily", "weekly", "monthly")


def _utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc)


class CamelModel(BaseModel):
    """Base for models serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ══════════════════════════════════════════════════════════════════════════
# Attendance Record
# ══════════════════════════════════════════════════════════════════════════


class HourlyLog(CamelModel):
    """
    Activity reported for one hour of the day.

    At most one entry per `hour` exists on a record; repeated heartbeats for
    the same hour keep the larger `active_minutes`.
    """

    hour: int = Field(ge=0, le=23, description="Hour of day (0-23) in server time")
    active_minutes: int = Field(ge=0, le=60, description="Active minutes in that hour")
    timestamp: dt.datetime = Field(description="When the hour was last reported")


class AttendanceRecord(CamelModel):
    """
    One attendance record per (user, calendar day).

    Lifecycle:
        1. Created on the user's first check-in of the day
        2. Mutated by heartbeats, check-outs and same-day re-check-ins
        3. Never deleted (kept for statistics)

    `total_active_minutes` is always recomputed from `hourly_logs`.
    """

    id: Optional[uuid.UUID] = Field(default=None, description="Store-assigned identifier")
    user_id: str = Field(alias="user", description="Opaque user identifier")
    day: dt.date = Field(alias="date", description="Calendar day in server time")
    check_in_time: dt.datetime
    check_out_time: Optional[dt.datetime] = None
    hourly_logs: List[HourlyLog] = Field(default_factory=list)
    total_active_minutes: int = 0
    is_checked_in: bool = True
    last_heartbeat: Optional[dt.datetime] = None
    version: int = Field(default=0, description="Optimistic concurrency version")
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    def log_for_hour(self, hour: int) -> Optional[HourlyLog]:
        for log in self.hourly_logs:
            if log.hour == hour:
                return log
        return None

    def in_utc(self) -> "AttendanceRecord":
        """Copy with every timestamp converted to UTC (stores return records this way)."""
        return self.model_copy(
            update={
                "check_in_time": _utc(self.check_in_time),
                "check_out_time": _utc(self.check_out_time),
                "last_heartbeat": _utc(self.last_heartbeat),
                "created_at": _utc(self.created_at),
                "updated_at": _utc(self.updated_at),
                "hourly_logs": [
                    log.model_copy(update={"timestamp": _utc(log.timestamp)})
                    for log in self.hourly_logs
                ],
            }
        )


# ══════════════════════════════════════════════════════════════════════════
# Tracker Results
# ══════════════════════════════════════════════════════════════════════════


class AttendancePayload(CamelModel):
    """`data` of POST /check-in."""

    attendance: AttendanceRecord


class HeartbeatResult(CamelModel):
    hour: int
    total_active_minutes: int
    total_active_hours: float


class CheckOutSummary(CamelModel):
    check_in: dt.datetime
    check_out: dt.datetime
    total_active_hours: float


class CheckOutResult(CamelModel):
    """`data` of POST /check-out: the closed record plus a short summary."""

    attendance: AttendanceRecord
    summary: CheckOutSummary


class AttendanceStatus(CamelModel):
    """
    Current (or last known) session state for a user.

    Every field falls back to false/null/0 when the user has no record.
    """

    is_checked_in: bool = False
    check_in_time: Optional[dt.datetime] = None
    check_out_time: Optional[dt.datetime] = None
    total_active_minutes: int = 0
    total_active_hours: float = 0
    last_heartbeat: Optional[dt.datetime] = None


class DailyAttendance(CamelModel):
    """One row of the stats `records` list."""

    day: dt.date = Field(alias="date")
    check_in: dt.datetime
    check_out: Optional[dt.datetime] = None
    active_hours: float


class AttendanceStats(CamelModel):
    period: str
    total_days: int
    total_hours: float
    total_minutes: int
    average_hours_per_day: float
    records: List[DailyAttendance] = Field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════════
# Request Bodies
# ══════════════════════════════════════════════════════════════════════════


class HeartbeatRequest(CamelModel):
    """
    Body of POST /heartbeat.

    `activeMinutes` defaults to a full hour. Out-of-range integers are
    clamped to 0-60 by the tracker rather than rejected; non-integers are
    rejected with 400.
    """

    active_minutes: int = Field(default=60, description="Active minutes in the current hour")


# ══════════════════════════════════════════════════════════════════════════
# Envelope & Errors
# ══════════════════════════════════════════════════════════════════════════


class ApiResponse(BaseModel, Generic[DataT]):
    """
    Success envelope shared by every attendance endpoint.

    Example:
        {"success": true, "message": "Checked in successfully", "data": {...}}
    """

    success: bool = True
    message: Optional[str] = None
    data: DataT


class ErrorResponse(BaseModel):
    """
    Error envelope rendered by the global exception handlers.

    Example:
        {
            "success": false,
            "message": "No active session found. Please check in first.",
            "error": "no_active_session",
            "request_id": "a1b2c3d4"
        }
    """

    success: bool = False
    message: str = Field(description="Human-readable error description")
    error: str = Field(description="Machine-readable error code")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    data: Optional[dict] = Field(default=None, description="Record involved, if any")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and store status."""

    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    store: str = Field(description="Record store: connected, disconnected, memory")
    uptime_seconds: float = Field(description="Seconds since service started")
