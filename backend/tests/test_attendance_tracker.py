"""
Attendance API — Attendance Tracker Unit Tests
==============================================

What:  Tests for the check-in / heartbeat / check-out state machine and
       statistics, run against InMemoryRecordStore with a FixedClock.

What we test:
    ✅ One record per user per day; resume after same-day check-out
    ✅ Heartbeats: max-merge per hour, clamping, no auto check-in
    ✅ Overnight sessions keep collecting on the day they were opened
    ✅ Check-out summary and the no-session guards
    ✅ Status defaults and fallback to the latest record
    ✅ Stats windows, half-up rounding and averages
    ✅ Pre-write record validation
"""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from attendance_api.exceptions import (
    AlreadyCheckedInError,
    AlreadyCheckedOutError,
    ConcurrentModificationError,
    NoActiveSessionError,
    ValidationError,
)
from attendance_api.schemas.attendance import AttendanceRecord, HourlyLog
from attendance_api.services.attendance_tracker import (
    AttendanceTracker,
    clamp_active_minutes,
    first_day_in_window,
    minutes_to_hours,
    period_start,
    round_tenth,
    subtract_month,
    validate_record,
)
from attendance_api.services.record_store import InMemoryRecordStore

from conftest import FixedClock

USER = "emp-1"


async def _work_day(tracker, clock, day, minutes_by_hour, check_out=True):
    """Check in at the first hour, send one heartbeat per entry, optionally check out."""
    hours = sorted(minutes_by_hour)
    clock.set(datetime(day.year, day.month, day.day, hours[0], 0))
    await tracker.check_in(USER)
    for hour in hours:
        clock.set(datetime(day.year, day.month, day.day, hour, 15))
        await tracker.heartbeat(USER, active_minutes=minutes_by_hour[hour])
    if check_out:
        await tracker.check_out(USER)


class TestCheckIn:
    """Opening and resuming the day's session."""

    @pytest.mark.asyncio
    async def test_first_check_in_creates_record(self, tracker, memory_store, clock):
        record = await tracker.check_in(USER)

        assert record.id is not None
        assert record.user_id == USER
        assert record.day == date(2024, 3, 15)
        assert record.is_checked_in is True
        assert record.check_in_time == clock.now()
        assert record.check_out_time is None
        assert record.hourly_logs == []
        assert record.total_active_minutes == 0
        assert record.last_heartbeat == clock.now()
        assert len(memory_store) == 1

    @pytest.mark.asyncio
    async def test_second_check_in_is_rejected_with_record(self, tracker, memory_store):
        first = await tracker.check_in(USER)

        with pytest.raises(AlreadyCheckedInError) as exc_info:
            await tracker.check_in(USER)

        assert exc_info.value.message == "Already checked in today"
        assert exc_info.value.record.id == first.id
        assert exc_info.value.record.is_checked_in is True
        assert len(memory_store) == 1

    @pytest.mark.asyncio
    async def test_check_in_after_check_out_resumes_same_record(self, tracker, memory_store, clock):
        first = await tracker.check_in(USER)
        clock.advance(hours=3)
        await tracker.check_out(USER)
        clock.advance(hours=1)

        resumed = await tracker.check_in(USER)

        assert resumed.id == first.id
        assert resumed.is_checked_in is True
        assert resumed.check_out_time is None
        assert resumed.check_in_time == first.check_in_time
        assert resumed.last_heartbeat == clock.now()
        assert resumed.version == 2
        assert len(memory_store) == 1

    @pytest.mark.asyncio
    async def test_next_day_check_in_creates_new_record(self, tracker, memory_store, clock):
        await tracker.check_in(USER)
        await tracker.check_out(USER)
        clock.advance(days=1)

        record = await tracker.check_in(USER)

        assert record.day == date(2024, 3, 16)
        assert len(memory_store) == 2

    @pytest.mark.asyncio
    async def test_users_are_independent(self, tracker, memory_store):
        await tracker.check_in("emp-1")
        await tracker.check_in("emp-2")

        assert len(memory_store) == 2

    @pytest.mark.asyncio
    async def test_day_follows_clock_timezone(self, memory_store):
        """20:00 UTC on the 14th is already the 15th in Kolkata (UTC+5:30)."""
        kolkata = FixedClock(datetime(2024, 3, 14, 20, 0, tzinfo=timezone.utc), tz=ZoneInfo("Asia/Kolkata"))
        tracker = AttendanceTracker(store=memory_store, clock=kolkata)

        record = await tracker.check_in(USER)
        result = await tracker.heartbeat(USER)

        assert record.day == date(2024, 3, 15)
        assert result.hour == 1

    @pytest.mark.asyncio
    async def test_returned_timestamps_are_utc(self, memory_store):
        kolkata = FixedClock(datetime(2024, 3, 15, 9, 0), tz=ZoneInfo("Asia/Kolkata"))
        tracker = AttendanceTracker(store=memory_store, clock=kolkata)

        checked_in = await tracker.check_in(USER)
        await tracker.heartbeat(USER)
        kolkata.advance(hours=8)
        result = await tracker.check_out(USER)

        assert checked_in.check_in_time.utcoffset() == timedelta(0)
        assert result.attendance.check_out_time.utcoffset() == timedelta(0)
        assert result.attendance.hourly_logs[0].timestamp.utcoffset() == timedelta(0)
        assert result.summary.check_out == result.attendance.check_out_time
        assert result.attendance.day == date(2024, 3, 15)


class TestHeartbeat:
    """Hourly activity logging."""

    @pytest.mark.asyncio
    async def test_heartbeat_without_session_is_rejected(self, tracker, memory_store):
        with pytest.raises(NoActiveSessionError) as exc_info:
            await tracker.heartbeat(USER)

        assert exc_info.value.message == "No active session found to record heartbeat"
        assert len(memory_store) == 0

    @pytest.mark.asyncio
    async def test_heartbeat_after_check_out_is_rejected(self, tracker):
        await tracker.check_in(USER)
        await tracker.check_out(USER)

        with pytest.raises(NoActiveSessionError):
            await tracker.heartbeat(USER)

    @pytest.mark.asyncio
    async def test_default_heartbeat_logs_full_hour(self, tracker, clock):
        await tracker.check_in(USER)

        result = await tracker.heartbeat(USER)

        assert result.hour == 9
        assert result.total_active_minutes == 60
        assert result.total_active_hours == 1.0

    @pytest.mark.asyncio
    async def test_same_hour_keeps_maximum(self, tracker, memory_store, clock):
        await tracker.check_in(USER)
        await tracker.heartbeat(USER, active_minutes=30)
        clock.advance(minutes=20)
        await tracker.heartbeat(USER, active_minutes=45)
        clock.advance(minutes=20)
        result = await tracker.heartbeat(USER, active_minutes=20)

        record = await memory_store.get_for_day(USER, date(2024, 3, 15))
        assert len(record.hourly_logs) == 1
        assert record.hourly_logs[0].active_minutes == 45
        assert record.hourly_logs[0].timestamp == clock.now()
        assert result.total_active_minutes == 45

    @pytest.mark.asyncio
    async def test_repeated_heartbeat_is_idempotent(self, tracker):
        await tracker.check_in(USER)
        first = await tracker.heartbeat(USER, active_minutes=40)
        second = await tracker.heartbeat(USER, active_minutes=40)

        assert first.total_active_minutes == second.total_active_minutes == 40

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reported, stored", [(90, 60), (-5, 0), (0, 0), (60, 60)])
    async def test_active_minutes_are_clamped(self, tracker, reported, stored):
        await tracker.check_in(USER)

        result = await tracker.heartbeat(USER, active_minutes=reported)

        assert result.total_active_minutes == stored

    @pytest.mark.asyncio
    async def test_hours_accumulate_in_order(self, tracker, memory_store, clock):
        await tracker.check_in(USER)
        clock.advance(hours=2)
        await tracker.heartbeat(USER, active_minutes=30)
        clock.advance(hours=-2)
        result = await tracker.heartbeat(USER, active_minutes=60)

        record = await memory_store.get_for_day(USER, date(2024, 3, 15))
        assert [log.hour for log in record.hourly_logs] == [9, 11]
        assert record.total_active_minutes == 90
        assert result.total_active_hours == 1.5

    @pytest.mark.asyncio
    async def test_overnight_session_stays_on_opening_day(self, tracker, memory_store, clock):
        clock.set(datetime(2024, 3, 15, 22, 0))
        await tracker.check_in(USER)
        clock.advance(hours=3)

        result = await tracker.heartbeat(USER, active_minutes=20)
        summary = await tracker.check_out(USER)

        assert result.hour == 1
        assert summary.attendance.day == date(2024, 3, 15)
        assert summary.attendance.log_for_hour(1).active_minutes == 20
        assert await memory_store.get_for_day(USER, date(2024, 3, 16)) is None


class TestCheckOut:
    """Closing the open session."""

    @pytest.mark.asyncio
    async def test_check_out_closes_session_with_summary(self, tracker, clock):
        check_in = await tracker.check_in(USER)
        await tracker.heartbeat(USER, active_minutes=45)
        clock.advance(hours=1)
        await tracker.heartbeat(USER, active_minutes=60)
        clock.advance(minutes=30)

        result = await tracker.check_out(USER)

        assert result.attendance.is_checked_in is False
        assert result.attendance.check_out_time == clock.now()
        assert result.summary.check_in == check_in.check_in_time
        assert result.summary.check_out == clock.now()
        assert result.summary.total_active_hours == 1.8

    @pytest.mark.asyncio
    async def test_check_out_without_session_is_rejected(self, tracker):
        with pytest.raises(NoActiveSessionError) as exc_info:
            await tracker.check_out(USER)

        assert exc_info.value.message == "No active session found. Please check in first."

    @pytest.mark.asyncio
    async def test_second_check_out_is_rejected(self, tracker):
        await tracker.check_in(USER)
        await tracker.check_out(USER)

        with pytest.raises(NoActiveSessionError):
            await tracker.check_out(USER)

    @pytest.mark.asyncio
    async def test_closed_record_from_store_is_already_checked_out(self, clock):
        """A store that hands back a closed record yields AlreadyCheckedOutError."""

        class LatestRecordStore(InMemoryRecordStore):
            async def find_active_session(self, user_id):
                return await self.find_latest(user_id)

        tracker = AttendanceTracker(store=LatestRecordStore(), clock=clock)
        await tracker.check_in(USER)
        await tracker.check_out(USER)

        with pytest.raises(AlreadyCheckedOutError) as exc_info:
            await tracker.check_out(USER)

        assert exc_info.value.record.is_checked_in is False


class TestStatus:
    """Current session state."""

    @pytest.mark.asyncio
    async def test_defaults_without_records(self, tracker):
        status = await tracker.get_status(USER)

        assert status.is_checked_in is False
        assert status.check_in_time is None
        assert status.check_out_time is None
        assert status.total_active_minutes == 0
        assert status.total_active_hours == 0
        assert status.last_heartbeat is None

    @pytest.mark.asyncio
    async def test_reports_open_session(self, tracker, clock):
        await tracker.check_in(USER)
        await tracker.heartbeat(USER, active_minutes=30)

        status = await tracker.get_status(USER)

        assert status.is_checked_in is True
        assert status.check_in_time == clock.now()
        assert status.total_active_minutes == 30
        assert status.total_active_hours == 0.5

    @pytest.mark.asyncio
    async def test_falls_back_to_latest_closed_record(self, tracker, clock):
        await _work_day(tracker, clock, date(2024, 3, 14), {9: 60})
        await _work_day(tracker, clock, date(2024, 3, 15), {9: 15})

        status = await tracker.get_status(USER)

        assert status.is_checked_in is False
        assert status.check_out_time is not None
        assert status.total_active_minutes == 15


class TestStats:
    """Attendance statistics over a period."""

    @pytest_asyncio.fixture
    async def history(self, tracker, clock):
        await _work_day(tracker, clock, date(2024, 3, 8), {9: 60})
        await _work_day(tracker, clock, date(2024, 3, 9), {9: 60, 10: 30})
        await _work_day(tracker, clock, date(2024, 3, 14), {9: 60})
        await _work_day(tracker, clock, date(2024, 3, 15), {9: 45}, check_out=False)
        clock.set(datetime(2024, 3, 15, 9, 0))

    @pytest.mark.asyncio
    async def test_weekly_window_excludes_day_seven_days_back(self, tracker, history):
        """Now is 03-15 09:00, so 03-08 (midnight before the window start) is out."""
        stats = await tracker.get_stats(USER, period="weekly")

        assert stats.period == "weekly"
        assert stats.total_days == 3
        assert stats.total_minutes == 195
        assert stats.total_hours == 3.3
        assert stats.average_hours_per_day == 1.1
        assert [r.day for r in stats.records] == [
            date(2024, 3, 15),
            date(2024, 3, 14),
            date(2024, 3, 9),
        ]
        assert [r.active_hours for r in stats.records] == [0.8, 1.0, 1.5]
        assert stats.records[0].check_out is None

    @pytest.mark.asyncio
    async def test_daily_window_is_today_only(self, tracker, history):
        stats = await tracker.get_stats(USER, period="daily")

        assert stats.total_days == 1
        assert stats.total_minutes == 45
        assert stats.total_hours == 0.8
        assert stats.average_hours_per_day == 0.8

    @pytest.mark.asyncio
    async def test_monthly_window(self, tracker, history):
        stats = await tracker.get_stats(USER, period="monthly")

        assert stats.total_days == 4
        assert stats.total_minutes == 255
        assert stats.total_hours == 4.3
        assert stats.average_hours_per_day == 1.1

    @pytest.mark.asyncio
    async def test_unknown_period_uses_weekly_window(self, tracker, history):
        stats = await tracker.get_stats(USER, period="yearly")

        assert stats.period == "yearly"
        assert stats.total_days == 3

    @pytest.mark.asyncio
    async def test_no_records(self, tracker):
        stats = await tracker.get_stats(USER)

        assert stats.period == "weekly"
        assert stats.total_days == 0
        assert stats.total_hours == 0
        assert stats.total_minutes == 0
        assert stats.average_hours_per_day == 0
        assert stats.records == []

    @pytest.mark.asyncio
    async def test_other_users_are_not_counted(self, tracker, history):
        stats = await tracker.get_stats("emp-2")

        assert stats.total_days == 0


class TestHelpers:
    """Rounding and window arithmetic."""

    @pytest.mark.parametrize(
        "value, expected",
        [(1.25, 1.3), (2.75, 2.8), (1.24, 1.2), (2.0, 2.0), (0, 0)],
    )
    def test_round_tenth_is_half_up(self, value, expected):
        assert round_tenth(value) == expected

    def test_minutes_to_hours(self):
        assert minutes_to_hours(45) == 0.8
        assert minutes_to_hours(90) == 1.5

    def test_clamp_active_minutes(self):
        assert clamp_active_minutes(61) == 60
        assert clamp_active_minutes(-1) == 0
        assert clamp_active_minutes(37) == 37

    @pytest.mark.parametrize(
        "moment, expected",
        [
            (datetime(2024, 3, 31, 10, 0), datetime(2024, 2, 29, 10, 0)),
            (datetime(2023, 3, 31, 10, 0), datetime(2023, 2, 28, 10, 0)),
            (datetime(2024, 1, 15, 8, 30), datetime(2023, 12, 15, 8, 30)),
        ],
    )
    def test_subtract_month_clamps_day(self, moment, expected):
        assert subtract_month(moment) == expected

    def test_period_start(self):
        now = datetime(2024, 3, 15, 9, 30)

        assert period_start("daily", now) == datetime(2024, 3, 15, 0, 0)
        assert period_start("weekly", now) == datetime(2024, 3, 8, 9, 30)
        assert period_start("monthly", now) == datetime(2024, 2, 15, 9, 30)
        assert period_start("fortnightly", now) == period_start("weekly", now)

    def test_first_day_in_window(self):
        assert first_day_in_window(datetime(2024, 3, 8, 0, 0)) == date(2024, 3, 8)
        assert first_day_in_window(datetime(2024, 3, 8, 0, 1)) == date(2024, 3, 9)


class TestValidateRecord:
    """Invariants checked before every write."""

    def _record(self, **overrides):
        now = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)
        values = dict(
            user_id=USER,
            day=date(2024, 3, 15),
            check_in_time=now,
            hourly_logs=[HourlyLog(hour=9, active_minutes=30, timestamp=now)],
            total_active_minutes=30,
        )
        values.update(overrides)
        return AttendanceRecord(**values)

    def test_valid_record_passes(self):
        validate_record(self._record())

    def test_total_must_match_logs(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_record(self._record(total_active_minutes=45))

        assert exc_info.value.field == "totalActiveMinutes"

    def test_duplicate_hours_are_rejected(self):
        now = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)
        logs = [
            HourlyLog(hour=9, active_minutes=30, timestamp=now),
            HourlyLog(hour=9, active_minutes=20, timestamp=now),
        ]

        with pytest.raises(ValidationError):
            validate_record(self._record(hourly_logs=logs, total_active_minutes=50))

    def test_checked_in_record_cannot_have_check_out(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_record(
                self._record(check_out_time=datetime(2024, 3, 15, 17, 0, tzinfo=timezone.utc))
            )

        assert exc_info.value.field == "checkOutTime"

    def test_check_out_cannot_precede_check_in(self):
        with pytest.raises(ValidationError):
            validate_record(
                self._record(
                    is_checked_in=False,
                    check_out_time=datetime(2024, 3, 15, 8, 0, tzinfo=timezone.utc),
                )
            )

    def test_missing_user_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_record(self._record(user_id=""))


class TestInMemoryRecordStore:
    """Copy semantics and optimistic versioning of the in-memory store."""

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, tracker, memory_store):
        await tracker.check_in(USER)

        loaded = await memory_store.get_for_day(USER, date(2024, 3, 15))
        loaded.is_checked_in = False

        reloaded = await memory_store.get_for_day(USER, date(2024, 3, 15))
        assert reloaded.is_checked_in is True

    @pytest.mark.asyncio
    async def test_stale_save_is_rejected(self, tracker, memory_store):
        await tracker.check_in(USER)
        stale = await memory_store.find_active_session(USER)
        await tracker.heartbeat(USER)

        with pytest.raises(ConcurrentModificationError):
            await memory_store.save(stale)

    @pytest.mark.asyncio
    async def test_duplicate_create_is_rejected(self, tracker, memory_store):
        record = await tracker.check_in(USER)

        with pytest.raises(ConcurrentModificationError):
            await memory_store.create(record.model_copy(update={"id": None}))

    @pytest.mark.asyncio
    async def test_list_between_is_inclusive_and_descending(self, tracker, memory_store, clock):
        for offset in range(4):
            clock.set(datetime(2024, 3, 10) + timedelta(days=offset, hours=9))
            await tracker.check_in(USER)
            await tracker.check_out(USER)

        records = await memory_store.list_between(USER, date(2024, 3, 11), date(2024, 3, 12))

        assert [r.day for r in records] == [date(2024, 3, 12), date(2024, 3, 11)]
