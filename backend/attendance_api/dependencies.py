"""
Attendance API — FastAPI Dependencies
=====================================

What:  Caller identity, record store selection and tracker construction.
How:   Route handlers declare `Depends(...)` on these; tests replace
       `get_record_store` / `get_clock` through `app.dependency_overrides`.

Identity:
    Authentication is performed by the upstream gateway, which forwards the
    verified user id and role in headers (names configurable, default
    X-User-ID / X-User-Role). This service only reads them.
"""

import logging
from enum import Enum
from typing import AsyncGenerator

from fastapi import Depends, Request
from pydantic import BaseModel

from attendance_api.clock import Clock, get_clock
from attendance_api.config import settings
from attendance_api.database import async_session_factory, session_scope
from attendance_api.exceptions import AuthenticationRequiredError, ForbiddenError
from attendance_api.services.attendance_tracker import AttendanceTracker
from attendance_api.services.record_store import InMemoryRecordStore, RecordStore
from attendance_api.services.sql_record_store import SqlAlchemyRecordStore

logger = logging.getLogger(__name__)


class Role(str, Enum):
    OWNER = "owner"
    EMPLOYEE = "employee"
    VENDOR = "vendor"
    CLIENT = "client"
    GUEST = "guest"


class CurrentUser(BaseModel):
    id: str
    role: Role


# ── Identity ──────────────────────────────────────────────────────────────


async def get_current_user(request: Request) -> CurrentUser:
    """
    Resolve the caller from gateway headers.

    Raises:
        AuthenticationRequiredError: missing user id or unknown role.
    """
    user_id = (request.headers.get(settings.auth_user_header) or "").strip()
    if not user_id:
        raise AuthenticationRequiredError()

    raw_role = (request.headers.get(settings.auth_role_header) or Role.EMPLOYEE.value).strip()
    try:
        role = Role(raw_role.lower())
    except ValueError:
        raise AuthenticationRequiredError(
            message=f"Unknown role '{raw_role}'",
            context={"role": raw_role},
        )

    return CurrentUser(id=user_id, role=role)


async def require_owner(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Only owners may read other employees' attendance."""
    if user.role is not Role.OWNER:
        logger.warning("User %s (%s) denied owner-only access", user.id, user.role.value)
        raise ForbiddenError(message="Only owners can view employee attendance")
    return user


# ── Record Store ──────────────────────────────────────────────────────────

# Shared by every request when STORE_BACKEND=memory.
memory_store = InMemoryRecordStore()


async def get_record_store() -> AsyncGenerator[RecordStore, None]:
    """
    Yield the configured RecordStore for one request.

    sql:    a SqlAlchemyRecordStore on a fresh session (commit on success,
            rollback on error)
    memory: the process-wide InMemoryRecordStore
    """
    if settings.store_backend == "memory":
        yield memory_store
        return

    async with session_scope() as session:
        yield SqlAlchemyRecordStore(session)


def get_attendance_tracker(
    store: RecordStore = Depends(get_record_store),
    clock: Clock = Depends(get_clock),
) -> AttendanceTracker:
    return AttendanceTracker(store=store, clock=clock)


async def ping_record_store() -> None:
    """
    Ping the configured RecordStore outside any request unit of work.

    Raises:
        StoreUnavailableError: the store cannot be reached.
    """
    if settings.store_backend == "memory":
        await memory_store.ping()
        return

    async with async_session_factory() as session:
        await SqlAlchemyRecordStore(session).ping()
