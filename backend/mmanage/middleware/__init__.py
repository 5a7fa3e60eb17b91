# Middleware package init
"""
MManage Backend — Middleware Package
=====================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain:
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    Request ID runs first so every access log line carries the correlation ID.
    Responses travel the chain in reverse: the logging middleware records
    status and duration, the request ID middleware echoes X-Request-ID.
"""
