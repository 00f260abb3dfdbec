# Routes package init
"""
Attendance API — Routes Package
===============================

Route Inventory:
    - attendance.py:  /api/attendance/*  (check-in, heartbeat, check-out,
                                          status, stats, employee stats)
    - health.py:      GET /health        (service health check)

Routes stay thin: resolve identity, call the tracker, wrap the result.
"""
