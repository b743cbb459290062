"""Rate limiting middleware using token bucket algorithm.

Limits mutating operations (POST/PUT/PATCH/DELETE) per client IP, which
covers stream updates and log clearing. Read operations (GET), including
playlist and segment fetches by players, are not rate limited.

Token Bucket Algorithm:
    - Each client has a bucket that fills at a constant rate
    - Bucket has maximum capacity (burst size)
    - Each request consumes 1 token from bucket
    - Request allowed if bucket has at least 1 token

Logging Strategy:
    DEBUG - Token bucket operations, exempt path checks
    INFO  - Middleware initialization, configuration
    WARN  - Rate limit violations with client IP
"""
from __future__ import annotations

import logging
import math
import time
from collections import defaultdict
from typing import Awaitable, Callable, Final

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

RATE_LIMITED_METHODS: Final[set[str]] = {"POST", "PUT", "PATCH", "DELETE"}

EXEMPT_PATHS: Final[set[str]] = {"/health", "/health/live", "/api/health", "/metrics"}

# ============================================================================
# Rate Limit Middleware
# ============================================================================

class RateLimitMiddleware(BaseHTTPMiddleware):
    """Token bucket rate limiter for mutating requests.

    Args:
        app: ASGI application
        requests_per_second: Token refill rate (default: 5.0)
        burst: Maximum token capacity (default: 10)

    Example:
        >>> app.add_middleware(
        ...     RateLimitMiddleware,
        ...     requests_per_second=5.0,
        ...     burst=10
        ... )
    """

    def __init__(
        self,
        app: ASGIApp,
        requests_per_second: float = 5.0,
        burst: int = 10
    ) -> None:
        super().__init__(app)
        self.rate = requests_per_second
        self.burst = burst

        # {client_ip: (tokens, last_update_time)}
        self.buckets: dict[str, tuple[float, float]] = defaultdict(
            lambda: (float(burst), time.monotonic())
        )

        logger.info(f"Rate limiter initialized: {requests_per_second} req/s, burst={burst}")

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path in EXEMPT_PATHS:
            logger.debug(f"Exempt path: {request.url.path}")
            return await call_next(request)

        if request.method not in RATE_LIMITED_METHODS:
            return await call_next(request)

        client_ip = self._get_client_ip(request)

        if not self._check_rate_limit(client_ip):
            logger.warning(f"Rate limit exceeded: {client_ip} {request.method} {request.url.path}")
            return self._rate_limit_response()

        logger.debug(f"Rate limit OK: {client_ip} {request.method} {request.url.path}")
        return await call_next(request)

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP, preferring proxy headers.

        Priority:
        1. X-Forwarded-For (first address)
        2. X-Real-IP
        3. request.client.host
        """
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

        if request.client:
            return request.client.host

        logger.warning("Unable to determine client IP")
        return "unknown"

    def _check_rate_limit(self, client_ip: str) -> bool:
        """Consume one token for the client if available.

        Returns:
            True if request allowed, False if rate limited
        """
        now = time.monotonic()
        tokens, last_update = self.buckets[client_ip]

        elapsed = now - last_update
        tokens = min(self.burst, tokens + elapsed * self.rate)

        if tokens >= 1.0:
            self.buckets[client_ip] = (tokens - 1.0, now)
            logger.debug(f"Token consumed: {client_ip} now has {tokens - 1.0:.2f} tokens")
            return True

        self.buckets[client_ip] = (tokens, now)
        return False

    def _rate_limit_response(self) -> JSONResponse:
        """429 Too Many Requests with the time until one token is available."""
        retry_after = max(1, math.ceil(1.0 / self.rate))

        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "code": "RATE_LIMIT_EXCEEDED",
                "message": "Too many requests. Please slow down.",
                "details": {"limit": f"Maximum {self.rate} requests per second allowed"}
            },
            headers={
                "Retry-After": str(retry_after)
            }
        )
