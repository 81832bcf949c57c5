# Middleware package init
"""
Study Portal Backend — Middleware Package
===========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters!):
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID: Generate correlation ID for logging and tracing
    2. Logging: Log request details with the generated request ID
    3. GZip / CORS: Provided by Starlette/FastAPI

    The order is reversed for responses:
    - Request ID is added to response headers
    - Logging captures response status and duration
"""
