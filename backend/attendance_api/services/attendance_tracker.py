"""
Attendance API — Attendance Tracker
===================================

What:  The daily attendance state machine and its statistics.
How:   Every operation is one read-modify-write through a RecordStore; the
       tracker keeps no state between calls and performs no locking or
       retries. Lost-update races are caught by the store's version check.
Who:   Called by the attendance route handlers.

State Machine (per user, per calendar day):

    NoSession ──check_in──▶ CheckedIn ──check_out──▶ CheckedOut
                               │  ▲                      │
                      heartbeat└──┘                      │
                               ▲────────check_in─────────┘  (same day: resume)

    - check_in on CheckedIn    → AlreadyCheckedInError (record attached)
    - heartbeat/check_out with no open record → NoActiveSessionError
    - heartbeat never opens a session

Overnight shifts:
    heartbeat, check_out and get_status look up the most recent OPEN record
    rather than today's, so a session opened at 22:00 keeps collecting
    hours after midnight on the record of the day it was opened.
"""

import calendar
import logging
import math
from datetime import date, datetime, timedelta
from typing import Optional

from attendance_api.clock import Clock
from attendance_api.exceptions import (
    AlreadyCheckedInError,
    AlreadyCheckedOutError,
    NoActiveSessionError,
    ValidationError,
)
from attendance_api.schemas.attendance import (
    AttendanceRecord,
    AttendanceStats,
    AttendanceStatus,
    CheckOutResult,
    CheckOutSummary,
    DailyAttendance,
    HeartbeatResult,
    HourlyLog,
)
from attendance_api.services.record_store import RecordStore

logger = logging.getLogger(__name__)

MAX_ACTIVE_MINUTES = 60
DEFAULT_PERIOD = "weekly"


# ══════════════════════════════════════════════════════════════════════════
# Arithmetic Helpers
# ══════════════════════════════════════════════════════════════════════════


def round_tenth(value: float) -> float:
    """Round half-up to one decimal (1.25 → 1.3), never banker's rounding."""
    return math.floor(value * 10 + 0.5) / 10


def minutes_to_hours(minutes: int) -> float:
    return round_tenth(minutes / 60)


def clamp_active_minutes(active_minutes: int) -> int:
    """Clamp reported minutes to the 0-60 range of one hour."""
    return max(0, min(active_minutes, MAX_ACTIVE_MINUTES))


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def subtract_month(moment: datetime) -> datetime:
    """Same wall-clock time one calendar month earlier, day clamped (Mar 31 → Feb 28/29)."""
    year, month = (moment.year - 1, 12) if moment.month == 1 else (moment.year, moment.month - 1)
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


def period_start(period: str, now: datetime) -> datetime:
    """
    Start of the stats window ending at `now`.

    daily   → midnight of now's day
    weekly  → now - 7 days
    monthly → now - 1 calendar month
    anything else falls back to the weekly rule.
    """
    if period == "daily":
        return start_of_day(now)
    if period == "monthly":
        return subtract_month(now)
    return now - timedelta(days=7)


def first_day_in_window(start: datetime) -> date:
    """
    First calendar day whose midnight falls at or after `start`.

    Records are keyed by day, and a day belongs to the window when its
    midnight lies in [start, now].
    """
    if start == start_of_day(start):
        return start.date()
    return start.date() + timedelta(days=1)


# ══════════════════════════════════════════════════════════════════════════
# Pre-write Validation
# ══════════════════════════════════════════════════════════════════════════


def validate_record(record: AttendanceRecord) -> None:
    """
    Check the record invariants before it is written.

    Raises:
        ValidationError: naming the first broken invariant.
    """
    if not record.user_id:
        raise ValidationError("Attendance record has no user", field="user")

    seen_hours = set()
    for log in record.hourly_logs:
        if not 0 <= log.hour <= 23:
            raise ValidationError(f"Invalid hour {log.hour}", field="hourlyLogs")
        if not 0 <= log.active_minutes <= MAX_ACTIVE_MINUTES:
            raise ValidationError(
                f"Invalid activeMinutes {log.active_minutes} for hour {log.hour}",
                field="hourlyLogs",
            )
        if log.hour in seen_hours:
            raise ValidationError(f"Duplicate hourly log for hour {log.hour}", field="hourlyLogs")
        seen_hours.add(log.hour)

    expected_total = sum(log.active_minutes for log in record.hourly_logs)
    if record.total_active_minutes != expected_total:
        raise ValidationError(
            "totalActiveMinutes does not match hourly logs",
            field="totalActiveMinutes",
            context={"expected": expected_total, "actual": record.total_active_minutes},
        )

    if record.is_checked_in and record.check_out_time is not None:
        raise ValidationError("Checked-in record cannot have a check-out time", field="checkOutTime")

    if record.check_out_time is not None and record.check_out_time < record.check_in_time:
        raise ValidationError("Check-out time precedes check-in time", field="checkOutTime")


# ══════════════════════════════════════════════════════════════════════════
# Tracker
# ══════════════════════════════════════════════════════════════════════════


class AttendanceTracker:
    """
    Check-in / heartbeat / check-out lifecycle and attendance statistics.

    Args:
        store: Persistence for attendance records
        clock: Time source; also defines the day boundary timezone

    Every public method accepts an optional `now`. Naive values are read in
    the clock's timezone, aware values converted into it.
    """

    def __init__(self, store: RecordStore, clock: Clock):
        self.store = store
        self.clock = clock

    def _now(self, now: Optional[datetime]) -> datetime:
        return self.clock.now() if now is None else self.clock.localize(now)

    async def _write(self, record: AttendanceRecord, *, create: bool = False) -> AttendanceRecord:
        validate_record(record)
        if create:
            return await self.store.create(record)
        return await self.store.save(record)

    # ── Session Lifecycle ─────────────────────────────────────────────────

    async def check_in(self, user_id: str, now: Optional[datetime] = None) -> AttendanceRecord:
        """
        Open (or resume) today's session.

        Returns:
            The created or resumed record.

        Raises:
            AlreadyCheckedInError: today's record is already checked in; the
                existing record is attached and nothing is written.
        """
        now = self._now(now)
        today = now.date()
        record = await self.store.get_for_day(user_id, today)

        if record is not None and record.is_checked_in:
            logger.info("User %s already checked in for %s", user_id, today)
            raise AlreadyCheckedInError(record=record, context={"date": today.isoformat()})

        if record is not None:
            # Resume after a same-day check-out; check_in_time stays the
            # first check-in of the day.
            record.is_checked_in = True
            record.check_out_time = None
            record.last_heartbeat = now
            saved = await self._write(record)
            logger.info("User %s resumed session for %s", user_id, today)
            return saved

        record = AttendanceRecord(
            user_id=user_id,
            day=today,
            check_in_time=now,
            is_checked_in=True,
            last_heartbeat=now,
            hourly_logs=[],
            total_active_minutes=0,
        )
        saved = await self._write(record, create=True)
        logger.info("User %s checked in for %s", user_id, today)
        return saved

    async def heartbeat(
        self,
        user_id: str,
        now: Optional[datetime] = None,
        active_minutes: int = MAX_ACTIVE_MINUTES,
    ) -> HeartbeatResult:
        """
        Record activity for the current hour of the open session.

        Repeated heartbeats for the same hour keep the maximum reported
        minutes, so retried or duplicated calls never double-count.

        Raises:
            NoActiveSessionError: the user has no open session.
        """
        now = self._now(now)
        record = await self.store.find_active_session(user_id)
        if record is None:
            raise NoActiveSessionError("No active session found to record heartbeat")

        minutes = clamp_active_minutes(active_minutes)
        if minutes != active_minutes:
            logger.debug("Clamped activeMinutes %d → %d for %s", active_minutes, minutes, user_id)

        current_hour = now.hour
        existing = record.log_for_hour(current_hour)
        if existing is not None:
            existing.active_minutes = max(existing.active_minutes, minutes)
            existing.timestamp = now
        else:
            record.hourly_logs.append(
                HourlyLog(hour=current_hour, active_minutes=minutes, timestamp=now)
            )
            record.hourly_logs.sort(key=lambda log: log.hour)

        record.total_active_minutes = sum(log.active_minutes for log in record.hourly_logs)
        record.last_heartbeat = now
        saved = await self._write(record)

        return HeartbeatResult(
            hour=current_hour,
            total_active_minutes=saved.total_active_minutes,
            total_active_hours=minutes_to_hours(saved.total_active_minutes),
        )

    async def check_out(self, user_id: str, now: Optional[datetime] = None) -> CheckOutResult:
        """
        Close the user's open session.

        Raises:
            NoActiveSessionError: no open session.
            AlreadyCheckedOutError: the located record is already closed.
        """
        now = self._now(now)
        record = await self.store.find_active_session(user_id)
        if record is None:
            raise NoActiveSessionError()
        if not record.is_checked_in:
            raise AlreadyCheckedOutError(record=record)

        record.check_out_time = now
        record.is_checked_in = False
        saved = await self._write(record)
        logger.info(
            "User %s checked out (%s, %d active minutes)",
            user_id,
            saved.day,
            saved.total_active_minutes,
        )

        return CheckOutResult(
            attendance=saved,
            summary=CheckOutSummary(
                check_in=saved.check_in_time,
                check_out=saved.check_out_time,
                total_active_hours=minutes_to_hours(saved.total_active_minutes),
            ),
        )

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_status(self, user_id: str, now: Optional[datetime] = None) -> AttendanceStatus:
        """
        Current session state; falls back to the most recent record so a
        checked-out user still sees their last session. Defaults when the
        user has no records at all.
        """
        record = await self.store.find_active_session(user_id)
        if record is None:
            record = await self.store.find_latest(user_id)
        if record is None:
            return AttendanceStatus()

        return AttendanceStatus(
            is_checked_in=record.is_checked_in,
            check_in_time=record.check_in_time,
            check_out_time=record.check_out_time,
            total_active_minutes=record.total_active_minutes,
            total_active_hours=minutes_to_hours(record.total_active_minutes),
            last_heartbeat=record.last_heartbeat,
        )

    async def get_stats(
        self,
        user_id: str,
        period: str = DEFAULT_PERIOD,
        now: Optional[datetime] = None,
    ) -> AttendanceStats:
        """
        Aggregate attendance over a daily, weekly or monthly window ending now.

        Unknown periods use the weekly window; the reported `period` is the
        value passed in.
        """
        now = self._now(now)
        first_day = first_day_in_window(period_start(period, now))
        records = await self.store.list_between(user_id, first_day, now.date())

        total_minutes = sum(r.total_active_minutes for r in records)
        total_days = len(records)
        total_hours = minutes_to_hours(total_minutes)
        average = round_tenth(total_hours / total_days) if total_days > 0 else 0

        return AttendanceStats(
            period=period,
            total_days=total_days,
            total_hours=total_hours,
            total_minutes=total_minutes,
            average_hours_per_day=average,
            records=[
                DailyAttendance(
                    day=r.day,
                    check_in=r.check_in_time,
                    check_out=r.check_out_time,
                    active_hours=minutes_to_hours(r.total_active_minutes),
                )
                for r in records
            ],
        )
