"""Request context middleware: assigns a correlation ID to every request.

The ID lives in ``request_id_var`` (core.logging), so it follows the
request through every ``await`` without being passed around, and the
log handler stamps it on every record.  Settlement tasks started with
``asyncio.create_task`` copy the context, so their log lines carry the
ID of the request that completed the course.  The worker binds the queue
task ID the same way.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from course_rewards.core.logging import request_id_var

logger = logging.getLogger(__name__)


def bind_request_id(value: str | None = None) -> str:
    """Set the correlation ID for the current context; generates one if omitted."""
    req_id = value or str(uuid.uuid4())
    request_id_var.set(req_id)
    return req_id


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Reads X-Request-ID (or generates one), logs a summary line, and
    echoes the ID on the response."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = bind_request_id(request.headers.get("x-request-id"))

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
