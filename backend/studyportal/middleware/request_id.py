"""
Study Portal Backend — Request ID Middleware
==============================================

What:  Assigns a short ID to each incoming request and returns it in the
       X-Request-ID response header.
How:   Reuses a client-supplied X-Request-ID or generates one; stores it in a
       ContextVar for loggers and exception handlers and on request.state
       for route handlers.
When:  Outermost custom middleware (runs before request logging).

Error responses carry the same ID in their `request_id` field, so an admin
reporting a failed upload can quote it and the matching log lines are easy
to find.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Client-supplied IDs longer than this are replaced
MAX_REQUEST_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Behavior:
        1. Use the client's X-Request-ID header when present and sane
        2. Otherwise generate an 8-character ID
        3. Store it in request_id_var and request.state.request_id
        4. Echo it in the response headers
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "").strip()
        if not rid or len(rid) > MAX_REQUEST_ID_LENGTH:
            rid = uuid.uuid4().hex[:8]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
