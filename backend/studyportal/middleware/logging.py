"""
Study Portal Backend — Request Logging Middleware
===================================================

What:  One access log line per HTTP request: method, path, status, duration,
       request ID, client IP.
How:   Times the downstream call with time.perf_counter and picks the log
       level from the status class (5xx ERROR, 4xx WARNING, else INFO).
When:  Runs inside RequestIDMiddleware so the request ID is already set.

Not logged: request bodies (uploaded PDFs) and form fields.
Skipped: GET /api/health, which probes hit every few seconds.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from studyportal.middleware.request_id import request_id_var

logger = logging.getLogger("studyportal.access")

QUIET_PATHS = {"/api/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs structured information about each HTTP request and response."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method
        rid = request_id_var.get("")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
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
