"""
FastAPI Middleware Stack.

Provides:
1. Request ID generation and propagation
2. Request/response logging with timing
3. HTTP metrics
"""

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from kycguard.common.metrics import record_http_request
from kycguard.core.logging import request_id_var

logger = structlog.get_logger(__name__)

ID_PREFIXES = ("kyc_", "aud_", "ovr_")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Adds a request ID to every request and logs it with timing.

    - Generates X-Request-ID if not provided
    - Records HTTP metrics with IDs normalized out of the path, unless
      metrics are disabled
    """

    def __init__(self, app, record_metrics: bool = True):
        super().__init__(app)
        self.record_metrics = record_metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
        token = request_id_var.set(request_id)
        request.state.request_id = request_id
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        duration = time.perf_counter() - start_time
        logger.info(
            "request_completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        if self.record_metrics:
            record_http_request(
                method=request.method,
                endpoint=normalize_path(request.url.path),
                status_code=response.status_code,
                duration=duration,
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration * 1000:.2f}ms"
        return response


def normalize_path(path: str) -> str:
    """Replace resource IDs with placeholders so metric labels stay bounded."""
    return "/".join(
        "{id}" if part.startswith(ID_PREFIXES) or len(part) > 20 else part
        for part in path.split("/")
    )


def setup_middleware(app: FastAPI, record_metrics: bool = True) -> None:
    app.add_middleware(RequestContextMiddleware, record_metrics=record_metrics)
