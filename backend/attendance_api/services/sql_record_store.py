"""
Attendance API — SQLAlchemy Record Store
========================================

What:  RecordStore implementation over the `attendance_records` table.
How:   One instance per request, bound to that request's AsyncSession
       (committed or rolled back by `session_scope`). Rows are mapped to
       AttendanceRecord schemas on read; writes are a single INSERT or a
       version-guarded UPDATE.

Optimistic Concurrency:
    UPDATE attendance_records SET ..., version = :v + 1
    WHERE id = :id AND version = :v
    → 0 rows affected means another request wrote first
      (ConcurrentModificationError) or the row is gone (NotFoundError).

Error Translation:
    IntegrityError (unique user/date)  → ConcurrentModificationError (409)
    Any other SQLAlchemyError          → StoreUnavailableError (503)
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_api.exceptions import (
    AttendanceError,
    ConcurrentModificationError,
    NotFoundError,
    StoreUnavailableError,
)
from attendance_api.models.attendance import AttendanceRow
from attendance_api.schemas.attendance import AttendanceRecord, HourlyLog

logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors(operation: str, **context: Any) -> Iterator[None]:
    try:
        yield
    except AttendanceError:
        raise
    except IntegrityError as e:
        logger.warning("Integrity violation during %s: %s", operation, str(e.orig))
        raise ConcurrentModificationError(
            message="An attendance record for this day already exists. Please retry.",
            context={"operation": operation, **context},
        ) from e
    except (SQLAlchemyError, OSError) as e:
        logger.error("Record store failure during %s: %s", operation, str(e))
        raise StoreUnavailableError(
            reason=str(e),
            context={"operation": operation, **context},
        ) from e


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return value.astimezone(timezone.utc) if value is not None else None


def _row_values(record: AttendanceRecord) -> Dict[str, Any]:
    """Column values for INSERT/UPDATE, timestamps normalized to UTC."""
    return {
        "user_id": record.user_id,
        "day": record.day,
        "check_in_time": _utc(record.check_in_time),
        "check_out_time": _utc(record.check_out_time),
        "hourly_logs": [
            HourlyLog(
                hour=log.hour,
                active_minutes=log.active_minutes,
                timestamp=_utc(log.timestamp),
            ).model_dump(mode="json", by_alias=True)
            for log in record.hourly_logs
        ],
        "total_active_minutes": record.total_active_minutes,
        "is_checked_in": record.is_checked_in,
        "last_heartbeat": _utc(record.last_heartbeat),
    }


def _to_record(row: AttendanceRow) -> AttendanceRecord:
    return AttendanceRecord(
        id=row.id,
        user_id=row.user_id,
        day=row.day,
        check_in_time=row.check_in_time,
        check_out_time=row.check_out_time,
        hourly_logs=[HourlyLog.model_validate(log) for log in row.hourly_logs or []],
        total_active_minutes=row.total_active_minutes,
        is_checked_in=row.is_checked_in,
        last_heartbeat=row.last_heartbeat,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlAlchemyRecordStore:
    """RecordStore backed by an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _first(self, query) -> Optional[AttendanceRecord]:
        # populate_existing: rows already in the identity map may be stale
        # after a version-guarded UPDATE issued without session sync.
        result = await self.session.execute(
            query.limit(1).execution_options(populate_existing=True)
        )
        row = result.scalars().first()
        return _to_record(row) if row is not None else None

    async def get_for_day(self, user_id: str, day: date) -> Optional[AttendanceRecord]:
        with _translate_errors("get_for_day", user_id=user_id):
            return await self._first(
                select(AttendanceRow).where(
                    AttendanceRow.user_id == user_id,
                    AttendanceRow.day == day,
                )
            )

    async def find_active_session(self, user_id: str) -> Optional[AttendanceRecord]:
        """
        Most recent open record for the user.

        Ordering contract: descending by `date`. A session opened yesterday
        and still open after midnight (overnight shift) is found here even
        though it is not today's record.
        """
        with _translate_errors("find_active_session", user_id=user_id):
            return await self._first(
                select(AttendanceRow)
                .where(
                    AttendanceRow.user_id == user_id,
                    AttendanceRow.is_checked_in.is_(True),
                )
                .order_by(AttendanceRow.day.desc())
            )

    async def find_latest(self, user_id: str) -> Optional[AttendanceRecord]:
        with _translate_errors("find_latest", user_id=user_id):
            return await self._first(
                select(AttendanceRow)
                .where(AttendanceRow.user_id == user_id)
                .order_by(AttendanceRow.day.desc())
            )

    async def list_between(
        self, user_id: str, first_day: date, last_day: date
    ) -> List[AttendanceRecord]:
        with _translate_errors("list_between", user_id=user_id):
            result = await self.session.execute(
                select(AttendanceRow)
                .where(
                    AttendanceRow.user_id == user_id,
                    AttendanceRow.day >= first_day,
                    AttendanceRow.day <= last_day,
                )
                .order_by(AttendanceRow.day.desc())
                .execution_options(populate_existing=True)
            )
            return [_to_record(row) for row in result.scalars().all()]

    async def create(self, record: AttendanceRecord) -> AttendanceRecord:
        with _translate_errors("create", user_id=record.user_id, date=record.day.isoformat()):
            now = datetime.now(timezone.utc)
            row = AttendanceRow(**_row_values(record), version=0, created_at=now, updated_at=now)
            self.session.add(row)
            # Flush assigns the UUID and surfaces the unique (user, date)
            # constraint now rather than at commit time.
            await self.session.flush()
            logger.debug("Created attendance record %s for %s", row.id, record.user_id)
            return _to_record(row)

    async def save(self, record: AttendanceRecord) -> AttendanceRecord:
        if record.id is None:
            raise NotFoundError(resource="attendance record")

        with _translate_errors("save", record_id=str(record.id)):
            now = datetime.now(timezone.utc)
            result = await self.session.execute(
                update(AttendanceRow)
                .where(
                    AttendanceRow.id == record.id,
                    AttendanceRow.version == record.version,
                )
                .values(**_row_values(record), version=record.version + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                exists = await self.session.execute(
                    select(AttendanceRow.id).where(AttendanceRow.id == record.id)
                )
                if exists.scalar_one_or_none() is None:
                    raise NotFoundError(resource="attendance record", resource_id=str(record.id))
                logger.warning(
                    "Stale write rejected for record %s (version %d)",
                    record.id,
                    record.version,
                )
                raise ConcurrentModificationError(
                    context={"record_id": str(record.id), "expected_version": record.version},
                )

            return record.in_utc().model_copy(
                update={"version": record.version + 1, "updated_at": now}
            )

    async def ping(self) -> None:
        with _translate_errors("ping"):
            await self.session.execute(text("SELECT 1"))
