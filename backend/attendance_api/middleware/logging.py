"""
Attendance API — Request Logging Middleware
===========================================

What:  One access log line per HTTP request.
How:   Measures the time spent downstream and logs method, path, status,
       duration and caller at a level chosen from the status code.

What we log vs what we DON'T log (privacy):
    Log:       method, path, status, duration, client IP, user ID, request ID
    Don't log: request bodies, role headers, anything else the gateway forwards
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from attendance_api.config import settings
from attendance_api.middleware.request_id import request_id_var

logger = logging.getLogger("attendance_api.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs structured information about each HTTP request and response.

    Heartbeats arrive roughly once an hour per checked-in user, so at INFO
    the access log stays proportional to the workforce, not to polling.
    Health checks are skipped entirely.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        user_id = request.headers.get(settings.auth_user_header) or "anonymous"
        method = request.method

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        logger.log(
            log_level,
            "%s %s %d %.1fms user=%s from %s",
            method,
            path,
            status,
            duration_ms,
            user_id,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )

        return response
