"""Request ID middleware — one ID per request, carried into every log line.

Learn: The ID comes from the incoming X-Request-ID header when a proxy or
the CLI sent a sane one, otherwise it is generated. It is bound to
structlog's contextvars together with the method and path, kept on
request.state, and echoed back in the response header.

An SSE response returns from call_next as soon as its headers are ready,
so for streams we log "request.stream_opened" here and leave the
connection's lifetime to the sse.* events, which carry the same
request_id plus the subscriber_id.
"""

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

# Client-supplied IDs end up in logs verbatim
VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def resolve_request_id(header_value: str | None) -> str:
    if header_value and VALID_REQUEST_ID.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request ID for logging and return it to the client."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = resolve_request_id(request.headers.get("X-Request-ID"))
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        if response.headers.get("content-type", "").startswith("text/event-stream"):
            logger.info("request.stream_opened", status=response.status_code)
        else:
            logger.info(
                "request.completed", status=response.status_code, duration_ms=duration_ms
            )
        return response
