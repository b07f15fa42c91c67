"""
Name: HTTP Middleware

Responsibilities:
  - Generate and propagate request_id (UUID)
  - Set request context for logging
  - Add X-Request-Id response header

Collaborators:
  - context.py: ContextVars for request-scoped data
  - logger.py: Structured logging

Constraints:
  - Must be first middleware (before CORS)
  - Must clear context after response
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ...context import clear_context, set_request_context
from ...crosscutting.logger import logger


class RequestContextMiddleware(BaseHTTPMiddleware):
    """R: Middleware that establishes request context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        # R: Honor an incoming X-Request-Id, otherwise generate one
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        set_request_context(request_id=request_id)
        request.state.request_id = request_id

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            latency_seconds = time.perf_counter() - start_time
            response.headers["X-Request-Id"] = request_id
            logger.info(
                "request completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "latency_ms": round(latency_seconds * 1000, 2),
                },
            )
            return response
        except Exception as exc:
            latency_seconds = time.perf_counter() - start_time
            logger.exception(
                "request failed",
                extra={
                    "latency_ms": round(latency_seconds * 1000, 2),
                    "error": str(exc),
                },
            )
            raise
        finally:
            clear_context()
