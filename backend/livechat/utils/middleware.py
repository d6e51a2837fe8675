"""
Custom middleware for request processing.
"""
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import time
import uuid
import logging
from typing import Callable, Dict, Iterable, Optional, Tuple
from collections import defaultdict

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Add request ID to request state and response headers."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        logger.debug(f"Request started: {request.method} {request.url.path} [{request_id}]")

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Add request timing information."""

    def __init__(self, app, slow_threshold: float = 1.0):
        super().__init__(app)
        self.slow_threshold = slow_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Measure and log request processing time."""
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        if process_time > self.slow_threshold:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time:.2f}s"
            )

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limiting per client address.

    Paths starting with any of ``exempt_paths`` (health probes, admin
    heartbeats, polls) are never throttled.
    """

    def __init__(
        self,
        app,
        calls: int = 100,
        period: int = 60,
        exempt_paths: Optional[Iterable[str]] = None
    ):
        super().__init__(app)
        self.calls = calls
        self.period = period
        self.exempt_paths: Tuple[str, ...] = tuple(exempt_paths or ("/health",))
        self.clients: Dict[str, list] = defaultdict(list)

    def _get_client_id(self, request: Request) -> str:
        client = request.client
        return client.host if client else "unknown"

    def _is_exempt(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.exempt_paths)

    def _is_rate_limited(self, client_id: str) -> bool:
        """Check if client has exceeded rate limit."""
        now = time.monotonic()
        cutoff = now - self.period

        self.clients[client_id] = [t for t in self.clients[client_id] if t > cutoff]

        if len(self.clients[client_id]) >= self.calls:
            return True

        self.clients[client_id].append(now)
        return False

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Check rate limit before processing request."""
        if self._is_exempt(request.url.path):
            return await call_next(request)

        client_id = self._get_client_id(request)

        if self._is_rate_limited(client_id):
            logger.warning(f"Rate limit exceeded for client: {client_id}")
            return Response(
                content="Rate limit exceeded. Please try again later.",
                status_code=429,
                headers={
                    "Retry-After": str(self.period),
                    "X-RateLimit-Limit": str(self.calls),
                    "X-RateLimit-Period": str(self.period)
                }
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.calls)
        response.headers["X-RateLimit-Remaining"] = str(
            self.calls - len(self.clients[client_id])
        )

        return response
