"""
API Middleware

Production middleware for:
- Request logging
- Rate limiting on the event write path
"""

import time
from typing import Callable, Dict, List, Sequence
import asyncio

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

logger = structlog.get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing information"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        logger.info(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "Request completed",
            request_id=request_id,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window rate limiter.

    Only requests whose path starts with one of ``paths`` are counted, so
    read endpoints stay unthrottled while event writes are capped per client.
    The window is per process; run one worker or front it with a shared limiter
    when exact limits matter.
    """

    def __init__(
        self,
        app,
        max_requests: int = 120,
        window_seconds: int = 60,
        paths: Sequence[str] = ("/api/v1/events",),
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.paths = tuple(paths)
        self._requests: Dict[str, List[float]] = {}
        self._last_sweep = 0.0
        self._lock = asyncio.Lock()

    def _is_limited(self, request: Request) -> bool:
        return request.method == "POST" and request.url.path.startswith(self.paths)

    def _sweep(self, current_time: float) -> None:
        """Forget clients with no requests left in the window, at most once per window."""
        if current_time - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = current_time
        for client_id in list(self._requests):
            recent = [t for t in self._requests[client_id] if current_time - t < self.window_seconds]
            if recent:
                self._requests[client_id] = recent
            else:
                del self._requests[client_id]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self._is_limited(request):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        current_time = time.time()

        async with self._lock:
            self._sweep(current_time)
            recent = [
                t for t in self._requests.get(client_id, [])
                if current_time - t < self.window_seconds
            ]

            if len(recent) >= self.max_requests:
                self._requests[client_id] = recent
                logger.warning(
                    "Rate limit exceeded",
                    client=client_id,
                    path=request.url.path,
                    requests=len(recent),
                )
                return Response(
                    content='{"error": "Rate limit exceeded"}',
                    status_code=429,
                    media_type="application/json",
                    headers={
                        "Retry-After": str(self.window_seconds),
                        "X-RateLimit-Limit": str(self.max_requests),
                        "X-RateLimit-Remaining": "0",
                    },
                )

            recent.append(current_time)
            self._requests[client_id] = recent
            remaining = self.max_requests - len(recent)

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)

        return response
