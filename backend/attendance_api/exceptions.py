"""
Attendance API — Custom Exception Hierarchy
===========================================

What:  Application-specific exceptions for every failure the service reports.
How:   Each exception class carries a message, an optional context dict, and
       the HTTP status and machine-readable error code it maps to. Global
       exception handlers (registered in main.py) render them into the
       `{success: false, message, error, ...}` envelope.
Who:   Raised by the tracker, record stores, identity dependencies and
       middleware; caught by global handlers.

Exception Hierarchy:
    AttendanceError (base)
    ├── ValidationError               → 400 validation_error
    ├── AlreadyCheckedInError         → 400 already_checked_in
    ├── AlreadyCheckedOutError        → 400 already_checked_out
    ├── NoActiveSessionError          → 400 no_active_session
    ├── AuthenticationRequiredError   → 401 authentication_required
    ├── ForbiddenError                → 403 forbidden
    ├── NotFoundError                 → 404 not_found
    ├── ConcurrentModificationError   → 409 concurrent_modification
    ├── RateLimitExceededError        → 429 rate_limit_exceeded
    └── StoreUnavailableError         → 503 store_unavailable

Business-rule violations (already checked in, no active session, ...) are
expected outcomes of normal client behaviour; they are raised, logged at
WARNING and translated 1:1 to 4xx responses.
"""

from typing import Any, Dict, Optional


class AttendanceError(Exception):
    """
    Base exception for all attendance service errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
        status_code: HTTP status the global handler responds with
        error_code:  Machine-readable kind returned as `error`
    """

    status_code: int = 500
    error_code: str = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(AttendanceError):
    """
    Raised when client input or a record about to be written is invalid.

    When:    Unknown stats period, malformed heartbeat body, a record that
             breaks an attendance invariant before it is persisted.
    HTTP:    400 Bad Request
    """

    status_code = 400
    error_code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class SessionStateError(AttendanceError):
    """
    Base for check-in/check-out state machine violations.

    Carries the record involved (when there is one) so the response can
    include it under `data.attendance`.
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        record: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.record = record


class AlreadyCheckedInError(SessionStateError):
    """Check-in requested while today's record is already checked in."""

    error_code = "already_checked_in"

    def __init__(self, record: Optional[Any] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__("Already checked in today", record=record, context=context)


class AlreadyCheckedOutError(SessionStateError):
    """Check-out requested on a record that is no longer checked in."""

    error_code = "already_checked_out"

    def __init__(self, record: Optional[Any] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__("Already checked out", record=record, context=context)


class NoActiveSessionError(SessionStateError):
    """
    Raised when heartbeat or check-out finds no open session for the user.

    Heartbeats never create a session; the client must check in first.
    """

    error_code = "no_active_session"

    def __init__(
        self,
        message: str = "No active session found. Please check in first.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, record=None, context=context)


class AuthenticationRequiredError(AttendanceError):
    """
    Raised when a request arrives without a usable caller identity.

    HTTP:    401 Unauthorized
    """

    status_code = 401
    error_code = "authentication_required"

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ForbiddenError(AttendanceError):
    """Raised when the caller's role may not perform the operation."""

    status_code = 403
    error_code = "forbidden"

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(AttendanceError):
    """
    Raised when a requested resource does not exist.

    When:    A record disappeared between read and write.
    HTTP:    404 Not Found
    """

    status_code = 404
    error_code = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConcurrentModificationError(AttendanceError):
    """
    Raised when a write loses an optimistic-concurrency race.

    What:    The record's version changed between read and write, or a second
             record for the same (user, date) was inserted concurrently.
    HTTP:    409 Conflict. The tracker does not retry; the client may.
    """

    status_code = 409
    error_code = "concurrent_modification"

    def __init__(
        self,
        message: str = "The attendance record was modified by another request. Please retry.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(AttendanceError):
    """
    Raised when a client exceeds the request rate limit.

    Response includes the Retry-After header.
    """

    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Too many requests. Please wait {retry_after} seconds before retrying."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class StoreUnavailableError(AttendanceError):
    """
    Raised when the record store fails.

    What:    A query, insert or update failed at the driver level.
    HTTP:    503 Service Unavailable. The driver message is attached as
             `details.reason` for diagnostics; the core never retries.
    """

    status_code = 503
    error_code = "store_unavailable"

    def __init__(
        self,
        message: str = "The attendance store is temporarily unavailable. Please try again later.",
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if reason:
            ctx["reason"] = reason
        super().__init__(message=message, context=ctx)
        self.reason = reason
