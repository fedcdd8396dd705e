"""Request logging middleware: method, path, status and duration per request."""

import time
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from starlette.responses import Response

from feesettle.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def register_request_logging(app: FastAPI) -> None:
    """Log every request and bind a request id into the structlog context.

    The id is taken from the incoming X-Request-ID header when present and
    echoed back on the response.
    """

    @app.middleware("http")
    async def log_requests(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        start = time.monotonic()
        status = 500

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            try:
                response = await call_next(request)
                status = response.status_code
                response.headers[REQUEST_ID_HEADER] = request_id
                return response
            finally:
                logger.debug(
                    "http_request",
                    method=request.method,
                    path=request.url.path,
                    status=status,
                    duration_ms=round((time.monotonic() - start) * 1000, 1),
                )
