"""
Request logging middleware with per-request trace ids.
"""
import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Successful health probes are not logged
SKIP_PATHS = {"/health", "/api/v1/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with trace_id, status and latency. Bodies are never logged."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = str(uuid.uuid4())
        request.state.trace_id = trace_id
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as exc:
            latency_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"[{trace_id}] {request.method} {request.url.path} -> EXCEPTION after {latency_ms}ms: {exc}",
                exc_info=True
            )
            # Let the global exception handler build the response
            raise

        latency_ms = int((time.time() - start_time) * 1000)
        status_code = response.status_code
        if request.url.path not in SKIP_PATHS or status_code >= 400:
            log_level = logging.WARNING if status_code >= 400 else logging.INFO
            user = request.headers.get("X-User-Email", "-")
            logger.log(
                log_level,
                f"[{trace_id}] {request.method} {request.url.path} user={user} -> {status_code} ({latency_ms}ms)"
            )

        response.headers["X-Trace-ID"] = trace_id
        return response
