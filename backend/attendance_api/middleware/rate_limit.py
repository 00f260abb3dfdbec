"""
Attendance API — Rate Limiting Middleware
=========================================

What:  Per-caller sliding window rate limiter.
How:   Tracks request timestamps per caller in memory. Callers are keyed by
       the gateway's user header, falling back to the client IP for
       anonymous traffic (which is rejected with 401 further in anyway).

Algorithm: Sliding Window Log
    1. Each key gets a list of request timestamps
    2. On each request, drop timestamps older than the window
    3. If remaining count >= limit, reject with 429 and Retry-After
    4. Otherwise record the timestamp and allow through

Single-process only: each uvicorn worker keeps its own counters.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from attendance_api.config import settings
from attendance_api.exceptions import RateLimitExceededError
from attendance_api.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """
    In-memory sliding window counter.

    Args:
        limit:  Max requests per key inside the window
        window: Window length in seconds
    """

    CLEANUP_EVERY = 1000

    def __init__(self, limit: int, window: int):
        self.limit = limit
        self.window = window
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._hits = 0

    def hit(self, key: str, now: Optional[float] = None) -> Optional[int]:
        """
        Record one request for `key`.

        Returns:
            None when allowed, otherwise the seconds until a slot frees up.
        """
        now = time.time() if now is None else now
        window_start = now - self.window

        timestamps = [ts for ts in self._requests[key] if ts > window_start]
        self._requests[key] = timestamps

        if len(timestamps) >= self.limit:
            return int(timestamps[0] + self.window - now) + 1

        timestamps.append(now)
        self._hits += 1
        if self._hits % self.CLEANUP_EVERY == 0:
            self._cleanup(window_start)
        return None

    def _cleanup(self, window_start: float) -> None:
        """Forget keys with no requests inside the current window."""
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for key in inactive:
            del self._requests[key]

        if inactive:
            logger.debug("Cleaned up %d inactive rate limit keys", len(inactive))

    def __len__(self) -> int:
        return len(self._requests)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies a SlidingWindowLimiter to every request.

    Configuration (from settings):
        rate_limit_requests: Max requests per window (default: 600)
        rate_limit_window:   Window duration in seconds (default: 3600)

    Excluded paths: /health and the API docs.

    Rejections are rendered here (not by the global handlers, which sit
    inside the middleware stack) using the same error envelope.
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, limiter: Optional[SlidingWindowLimiter] = None, **kwargs):
        super().__init__(app, **kwargs)
        if limiter is None:
            limiter = SlidingWindowLimiter(
                limit=settings.rate_limit_requests,
                window=settings.rate_limit_window,
            )
        self.limiter = limiter

    @staticmethod
    def caller_key(request: Request) -> str:
        user_id = (request.headers.get(settings.auth_user_header) or "").strip()
        if user_id:
            return f"user:{user_id}"
        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        key = self.caller_key(request)
        retry_after = self.limiter.hit(key)
        if retry_after is None:
            return await call_next(request)

        logger.warning(
            "Rate limit exceeded for %s: %d requests in %ds window",
            key,
            self.limiter.limit,
            self.limiter.window,
        )
        exc = RateLimitExceededError(retry_after=retry_after)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "message": exc.message,
                "error": exc.error_code,
                "details": exc.context,
                "request_id": request_id_var.get(""),
            },
            headers={"Retry-After": str(retry_after)},
        )
