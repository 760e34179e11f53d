"""Request ID middleware — unique ID per request for log correlation.

Learn: Every request gets an ID, either from the incoming X-Request-ID
header or freshly generated. It is bound to structlog's contextvars
together with the method and path, so every log line emitted while
handling the request (including the auth gate's user_id) carries it.
"""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate, bind and echo an X-Request-ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.debug("request.completed", status=response.status_code)
        return response
