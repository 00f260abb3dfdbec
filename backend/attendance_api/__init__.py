"""
Attendance API — Application Package Initializer
================================================

What: Marks the `attendance_api` directory as a Python package.
Who:  Used by uvicorn (attendance_api.main:app), Alembic and pytest.

Architecture Note:
    The backend follows a layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns, identity, envelope
    ├─────────────────────────────────────┤
    │   Services (AttendanceTracker)      │  ← State machine + aggregation
    ├─────────────────────────────────────┤
    │  RecordStore (SQL / in-memory)      │  ← Persistence behind one interface
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy engine/sessions
    └─────────────────────────────────────┘

    The tracker only talks to a RecordStore and a Clock, so it can be
    exercised in tests without HTTP or a database.
"""

__version__ = "1.0.0"
