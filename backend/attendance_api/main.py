"""
Attendance API — FastAPI Application Factory
============================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn attendance_api.main:app).

Application Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                      FastAPI App                        │
    │                                                         │
    │  Middleware Chain:                                      │
    │  ┌──────────────┐ ┌──────────┐ ┌─────────────────┐      │
    │  │    Req ID    │→│ Rate Lim │→│  Logging        │      │
    │  └──────────────┘ └──────────┘ └─────────────────┘      │
    │                                                         │
    │  Routes:                                                │
    │  ┌──────────────────────────┐ ┌─────────────────┐       │
    │  │ /api/attendance/*        │ │ GET /health     │       │
    │  └──────────────────────────┘ └─────────────────┘       │
    │                                                         │
    │  Exception Handlers:                                    │
    │  ┌─────────────────────────────────────────────────┐    │
    │  │ AttendanceError→status_code │ Validation→400    │    │
    │  │ StoreUnavailable→503        │ Unexpected→500    │    │
    │  └─────────────────────────────────────────────────┘    │
    └─────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (logged, never fatal)
    3. Wait for the database (sql backend only)

    Shutdown:
    1. Dispose database engine (close all connections)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from attendance_api import __version__
from attendance_api.config import settings
from attendance_api.database import dispose_engine, wait_for_database
from attendance_api.exceptions import (
    AttendanceError,
    RateLimitExceededError,
    SessionStateError,
    StoreUnavailableError,
)
from attendance_api.middleware.logging import RequestLoggingMiddleware
from attendance_api.middleware.rate_limit import RateLimitMiddleware
from attendance_api.middleware.request_id import (
    RequestIDLogFilter,
    RequestIDMiddleware,
    request_id_var,
)
from attendance_api.routes import attendance, health

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s

    The request ID comes from RequestIDLogFilter, attached to the handler so
    third-party records (uvicorn, SQLAlchemy) get one too.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Attendance API %s starting up (store: %s)...", __version__, settings.store_backend)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: /health reports the store state
        logger.error("Configuration error: %s", str(e))

    if settings.store_backend == "sql":
        if not await wait_for_database():
            logger.error("Database unreachable; requests will fail with 503 until it recovers.")

    logger.info("Timezone for attendance days: %s", settings.timezone)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Attendance API shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Render the `{success: false, ...}` error envelope."""
    content: Dict[str, Any] = {
        "success": False,
        "message": message,
        "error": error,
        "request_id": request_id_var.get(""),
    }
    if details:
        content["details"] = details
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Handler hierarchy (most specific wins):
        SessionStateError       → 400, record under data.attendance
        RateLimitExceededError  → 429 + Retry-After
        StoreUnavailableError   → 503, driver reason under details.reason
        AttendanceError (base)  → exc.status_code / exc.error_code
        RequestValidationError  → 400 validation_error
        HTTPException           → its status (unknown routes, bad methods)
        Exception (fallback)    → 500 internal_server_error

    Stack traces never reach the client; they are logged server-side.
    """

    @app.exception_handler(SessionStateError)
    async def handle_session_state(request: Request, exc: SessionStateError):
        """Check-in/out sequence violation: a normal client outcome."""
        logger.warning("Session state violation (%s): %s", exc.error_code, exc.message)
        data = None
        if exc.record is not None:
            data = {"attendance": exc.record.model_dump(mode="json", by_alias=True)}
        return error_response(
            exc.status_code, exc.error_code, exc.message, details=exc.context, data=data
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return error_response(
            exc.status_code,
            exc.error_code,
            exc.message,
            details=exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(StoreUnavailableError)
    async def handle_store_unavailable(request: Request, exc: StoreUnavailableError):
        logger.error("Record store unavailable: %s | Context: %s", exc.message, exc.context)
        return error_response(exc.status_code, exc.error_code, exc.message, details=exc.context)

    @app.exception_handler(AttendanceError)
    async def handle_attendance_error(request: Request, exc: AttendanceError):
        if exc.status_code >= 500:
            logger.error("%s: %s | Context: %s", exc.error_code, exc.message, exc.context)
        else:
            logger.warning("%s: %s", exc.error_code, exc.message)
        return error_response(exc.status_code, exc.error_code, exc.message, details=exc.context)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        """Malformed body or query: reported as 400 like every other input error."""
        problems = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())[1:]),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        logger.warning("Request validation failed: %s", problems)
        return error_response(
            400,
            "validation_error",
            "Request validation failed",
            details={"errors": problems},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        error = "not_found" if exc.status_code == 404 else "http_error"
        return error_response(
            exc.status_code, error, str(exc.detail), headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unexpected error: %s", str(exc), exc_info=True)
        return error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Tests build a fresh app per test and swap the record store and clock
    through `app.dependency_overrides`.
    """
    app = FastAPI(
        title="Attendance API",
        description=(
            "Daily check-in / check-out tracking with hourly activity heartbeats "
            "and per-period attendance statistics."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Executes in REVERSE order of addition:
    # RequestID → RateLimit → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(attendance.router)
    app.include_router(health.router)

    return app


# uvicorn expects `attendance_api.main:app` to be importable
app = create_app()
