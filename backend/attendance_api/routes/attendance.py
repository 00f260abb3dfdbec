"""
Attendance API — Attendance Route Handlers
==========================================

What:  HTTP surface of the attendance tracker under /api/attendance.
How:   Resolves the caller, delegates to AttendanceTracker, wraps the result
       in the `{success, message, data}` envelope. Failures are raised and
       rendered by the global exception handlers in main.py.
Who:   Called by the mobile client's check-in screen, employee dashboard
       (status, stats) and owner dashboard (employee stats).

Endpoints:
    POST /api/attendance/check-in               201 {attendance}
    POST /api/attendance/heartbeat              200 {hour, totalActiveMinutes, totalActiveHours}
    POST /api/attendance/check-out              200 {attendance, summary}
    GET  /api/attendance/status                 200 status
    GET  /api/attendance/stats?period=          200 stats
    GET  /api/attendance/employee/{id}?period=  200 stats (owners only)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from attendance_api.dependencies import (
    CurrentUser,
    get_attendance_tracker,
    get_current_user,
    require_owner,
)
from attendance_api.exceptions import ValidationError
from attendance_api.schemas.attendance import (
    STATS_PERIODS,
    ApiResponse,
    AttendancePayload,
    AttendanceStats,
    AttendanceStatus,
    CheckOutResult,
    ErrorResponse,
    HeartbeatRequest,
    HeartbeatResult,
)
from attendance_api.services.attendance_tracker import DEFAULT_PERIOD, AttendanceTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attendance", tags=["Attendance"])

_session_errors = {
    400: {"description": "Session state violation", "model": ErrorResponse},
    401: {"description": "Missing caller identity", "model": ErrorResponse},
    409: {"description": "Concurrent modification", "model": ErrorResponse},
    503: {"description": "Record store unavailable", "model": ErrorResponse},
}


def _validate_period(period: str) -> str:
    if period not in STATS_PERIODS:
        raise ValidationError(
            f"Invalid period '{period}'. Must be one of: {', '.join(STATS_PERIODS)}",
            field="period",
        )
    return period


@router.post(
    "/check-in",
    status_code=201,
    response_model=ApiResponse[AttendancePayload],
    responses=_session_errors,
    summary="Start the work day (check in)",
)
async def check_in(
    user: CurrentUser = Depends(get_current_user),
    tracker: AttendanceTracker = Depends(get_attendance_tracker),
) -> ApiResponse[AttendancePayload]:
    """
    Creates today's record, or resumes it after a same-day check-out.
    Responds 400 `already_checked_in` (with the record) when already open.
    """
    record = await tracker.check_in(user.id)
    return ApiResponse[AttendancePayload](
        message="Checked in successfully",
        data=AttendancePayload(attendance=record),
    )


@router.post(
    "/heartbeat",
    response_model=ApiResponse[HeartbeatResult],
    responses=_session_errors,
    summary="Log activity for the current hour",
)
async def heartbeat(
    body: Optional[HeartbeatRequest] = Body(default=None),
    user: CurrentUser = Depends(get_current_user),
    tracker: AttendanceTracker = Depends(get_attendance_tracker),
) -> ApiResponse[HeartbeatResult]:
    """
    Called by the client about once per hour while the user is checked in.
    An empty body counts as a full active hour.
    """
    body = body or HeartbeatRequest()
    result = await tracker.heartbeat(user.id, active_minutes=body.active_minutes)
    return ApiResponse[HeartbeatResult](message="Heartbeat recorded", data=result)


@router.post(
    "/check-out",
    response_model=ApiResponse[CheckOutResult],
    responses=_session_errors,
    summary="End the work day (check out)",
)
async def check_out(
    user: CurrentUser = Depends(get_current_user),
    tracker: AttendanceTracker = Depends(get_attendance_tracker),
) -> ApiResponse[CheckOutResult]:
    result = await tracker.check_out(user.id)
    return ApiResponse[CheckOutResult](message="Checked out successfully", data=result)


@router.get(
    "/status",
    response_model=ApiResponse[AttendanceStatus],
    responses={401: _session_errors[401], 503: _session_errors[503]},
    summary="Current check-in status",
)
async def get_status(
    user: CurrentUser = Depends(get_current_user),
    tracker: AttendanceTracker = Depends(get_attendance_tracker),
) -> ApiResponse[AttendanceStatus]:
    status = await tracker.get_status(user.id)
    return ApiResponse[AttendanceStatus](data=status)


@router.get(
    "/stats",
    response_model=ApiResponse[AttendanceStats],
    responses={
        400: {"description": "Unknown period", "model": ErrorResponse},
        401: _session_errors[401],
        503: _session_errors[503],
    },
    summary="Attendance statistics for the caller",
)
async def get_stats(
    period: str = Query(
        default=DEFAULT_PERIOD,
        description="Aggregation window: daily, weekly or monthly",
    ),
    user: CurrentUser = Depends(get_current_user),
    tracker: AttendanceTracker = Depends(get_attendance_tracker),
) -> ApiResponse[AttendanceStats]:
    stats = await tracker.get_stats(user.id, period=_validate_period(period))
    return ApiResponse[AttendanceStats](data=stats)


@router.get(
    "/employee/{employee_id}",
    response_model=ApiResponse[AttendanceStats],
    responses={
        400: {"description": "Unknown period", "model": ErrorResponse},
        401: _session_errors[401],
        403: {"description": "Caller is not an owner", "model": ErrorResponse},
        503: _session_errors[503],
    },
    summary="Attendance statistics for an employee (owners only)",
)
async def get_employee_stats(
    employee_id: str,
    period: str = Query(
        default=DEFAULT_PERIOD,
        description="Aggregation window: daily, weekly or monthly",
    ),
    owner: CurrentUser = Depends(require_owner),
    tracker: AttendanceTracker = Depends(get_attendance_tracker),
) -> ApiResponse[AttendanceStats]:
    logger.info("Owner %s requested %s stats for employee %s", owner.id, period, employee_id)
    stats = await tracker.get_stats(employee_id, period=_validate_period(period))
    return ApiResponse[AttendanceStats](data=stats)
