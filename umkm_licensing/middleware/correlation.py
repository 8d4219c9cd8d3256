# ==== CORRELATION ID MIDDLEWARE ==== #

"""
Correlation ID middleware for request tracing.

Every request gets an ``X-Correlation-Id`` (taken from the caller or
generated), which is stored on ``request.state``, bound to log records for the
duration of the request and echoed on the response.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from loguru import logger
from prometheus_client import Histogram
from starlette.middleware.base import BaseHTTPMiddleware

from umkm_licensing.observability.tracing import get_tracer


# ==== MODULE INITIALIZATION ==== #

tracer = get_tracer(__name__)

http_request_duration_seconds = Histogram(
    "umkm_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "status_code"]
)


# ==== CORRELATION MIDDLEWARE CLASS ==== #

class CorrelationMiddleware(BaseHTTPMiddleware):
    """Attach a correlation ID to each request, its logs and its response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-Id") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        start_time = time.perf_counter()

        with tracer.start_as_current_span("http_request") as span, \
                logger.contextualize(correlation_id=correlation_id):
            span.set_attribute("http.method", request.method)
            span.set_attribute("http.url", str(request.url))
            span.set_attribute("correlation_id", correlation_id)

            response = await call_next(request)
            response.headers["X-Correlation-Id"] = correlation_id

            http_request_duration_seconds.labels(
                method=request.method,
                status_code=str(response.status_code),
            ).observe(time.perf_counter() - start_time)
            span.set_attribute("http.status_code", response.status_code)

            return response
