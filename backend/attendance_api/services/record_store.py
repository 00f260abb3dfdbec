"""
Attendance API — Record Store Interface
=======================================

What:  The persistence contract AttendanceTracker depends on, plus a
       process-local implementation.
How:   `RecordStore` is a Protocol; the tracker never builds queries itself.
       Both implementations honour the same ordering and concurrency rules:

       - find_active_session / find_latest: descending by `date`, first hit
       - list_between: inclusive day range, descending by `date`
       - create: (user_id, date) must be unused, else ConcurrentModificationError
       - save: compare-and-swap on `version`, which is then incremented

Implementations:
    - SqlAlchemyRecordStore (services/sql_record_store.py): production
    - InMemoryRecordStore (below): local development and tests
"""

import uuid
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from attendance_api.exceptions import ConcurrentModificationError, NotFoundError
from attendance_api.schemas.attendance import AttendanceRecord


class RecordStore(Protocol):
    """
    Async persistence for attendance records keyed by (user, date).

    Every returned record carries its timestamps in UTC.
    """

    async def get_for_day(self, user_id: str, day: date) -> Optional[AttendanceRecord]:
        ...

    async def find_active_session(self, user_id: str) -> Optional[AttendanceRecord]:
        """Most recent record (by date) with is_checked_in = true."""
        ...

    async def find_latest(self, user_id: str) -> Optional[AttendanceRecord]:
        ...

    async def list_between(
        self, user_id: str, first_day: date, last_day: date
    ) -> List[AttendanceRecord]:
        ...

    async def create(self, record: AttendanceRecord) -> AttendanceRecord:
        ...

    async def save(self, record: AttendanceRecord) -> AttendanceRecord:
        ...

    async def ping(self) -> None:
        """Raises StoreUnavailableError when the store cannot be reached."""
        ...


class InMemoryRecordStore:
    """
    Dict-backed RecordStore.

    Records are deep-copied on the way in and out, so callers can never
    mutate stored state without going through `save`.

    Not shared between worker processes and lost on restart; selected with
    STORE_BACKEND=memory for local runs.
    """

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, date], AttendanceRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def _user_records(self, user_id: str) -> List[AttendanceRecord]:
        records = [r for (uid, _), r in self._records.items() if uid == user_id]
        return sorted(records, key=lambda r: r.day, reverse=True)

    async def get_for_day(self, user_id: str, day: date) -> Optional[AttendanceRecord]:
        record = self._records.get((user_id, day))
        return record.model_copy(deep=True) if record else None

    async def find_active_session(self, user_id: str) -> Optional[AttendanceRecord]:
        for record in self._user_records(user_id):
            if record.is_checked_in:
                return record.model_copy(deep=True)
        return None

    async def find_latest(self, user_id: str) -> Optional[AttendanceRecord]:
        records = self._user_records(user_id)
        return records[0].model_copy(deep=True) if records else None

    async def list_between(
        self, user_id: str, first_day: date, last_day: date
    ) -> List[AttendanceRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._user_records(user_id)
            if first_day <= r.day <= last_day
        ]

    async def create(self, record: AttendanceRecord) -> AttendanceRecord:
        key = (record.user_id, record.day)
        if key in self._records:
            raise ConcurrentModificationError(
                message="An attendance record for this day already exists. Please retry.",
                context={"user_id": record.user_id, "date": record.day.isoformat()},
            )
        now = datetime.now(timezone.utc)
        stored = record.in_utc().model_copy(
            deep=True,
            update={"id": uuid.uuid4(), "version": 0, "created_at": now, "updated_at": now},
        )
        self._records[key] = stored
        return stored.model_copy(deep=True)

    async def save(self, record: AttendanceRecord) -> AttendanceRecord:
        key = (record.user_id, record.day)
        current = self._records.get(key)
        if current is None or current.id != record.id:
            raise NotFoundError(resource="attendance record", resource_id=str(record.id))
        if current.version != record.version:
            raise ConcurrentModificationError(
                context={"record_id": str(record.id), "expected_version": record.version},
            )
        stored = record.in_utc().model_copy(
            deep=True,
            update={"version": record.version + 1, "updated_at": datetime.now(timezone.utc)},
        )
        self._records[key] = stored
        return stored.model_copy(deep=True)

    async def ping(self) -> None:
        return None
