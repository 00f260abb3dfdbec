# Services package init
"""
Attendance API — Services Layer
===============================

Service Inventory:
    - AttendanceTracker: check-in / heartbeat / check-out state machine and
      statistics (attendance_tracker.py)
    - RecordStore: persistence protocol + InMemoryRecordStore (record_store.py)
    - SqlAlchemyRecordStore: PostgreSQL/SQLite implementation (sql_record_store.py)
"""
