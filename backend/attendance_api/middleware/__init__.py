# Middleware package init
"""
Attendance API — Middleware Package
===================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters!):
    Request → [Request ID] → [Rate Limit] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID first: correlation ID for logs and every error envelope,
       429 rejections included
    2. Rate Limit: reject abusive callers before any further processing
    3. Logging: method, path, status and duration with the request ID

    The order is reversed for responses, so the request ID header is set and
    the logged duration includes everything downstream.
"""
