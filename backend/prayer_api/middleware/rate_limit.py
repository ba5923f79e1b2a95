"""
Prayer API Backend: Rate Limiting Middleware
==============================================

What:  Per-client sliding-window rate limit (default 100 requests / 15 min).
How:   Keeps a deque of request timestamps per client in memory. Each request
       drops timestamps older than the window; a full window gets 429 with a
       Retry-After header.

Client identity:
    Behind a reverse proxy (Render, Heroku, nginx) every socket peer is the
    proxy. With `trust_proxy` on, the first X-Forwarded-For hop is used.

Scope:
    State is per process. Multiple workers each enforce their own window,
    so the effective limit scales with the worker count.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from prayer_api.config import settings

logger = logging.getLogger(__name__)

# Sweep clients with empty windows every N admitted requests.
SWEEP_INTERVAL = 1000


def client_key(request: Request, trust_proxy: bool) -> str:
    if trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Args:
        max_requests / window_seconds / trust_proxy: default to settings;
            tests pass small values.
        clock: Seconds as float (default time.monotonic)
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(
        self,
        app,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
        trust_proxy: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window
        self.trust_proxy = settings.trust_proxy if trust_proxy is None else trust_proxy
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._admitted = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        key = client_key(request, self.trust_proxy)
        now = self._clock()
        window_start = now - self.window_seconds

        timestamps = self._requests[key]
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()

        if len(timestamps) >= self.max_requests:
            retry_after = int(timestamps[0] + self.window_seconds - now) + 1
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                key,
                len(timestamps),
                self.window_seconds,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Too many requests from this IP, please try again later.",
                    "details": {"retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        timestamps.append(now)
        self._admitted += 1
        if self._admitted % SWEEP_INTERVAL == 0:
            self._sweep(window_start)

        return await call_next(request)

    def _sweep(self, window_start: float) -> None:
        idle = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for key in idle:
            del self._requests[key]
        if idle:
            logger.debug("Dropped rate-limit state for %d idle clients", len(idle))
