"""Request logging middleware."""

import logging
import time
from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs its outcome and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Keep the caller's id so logs can be correlated across services
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id
        route = f"{request.method} {request.url.path}"
        client_ip = request.client.host if request.client else "-"

        started = time.perf_counter()
        logger.debug(f"[{request_id}] {route} started from {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.error(f"[{request_id}] {route} failed after {duration_ms:.1f}ms: {e}")
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, f"[{request_id}] {route} -> {response.status_code} in {duration_ms:.1f}ms")

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
