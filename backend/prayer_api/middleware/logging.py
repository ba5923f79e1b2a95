"""
Prayer API Backend: Access Log Middleware
===========================================

What:  One log line per HTTP request on the `prayer_api.access` logger.
How:   Times the request and logs method, path, status, duration, request id
       and client address. The level follows the status: 5xx ERROR,
       4xx WARNING, everything else INFO.

Bodies are never logged: prayer texts are personal.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from prayer_api.middleware.request_id import request_id_var

logger = logging.getLogger("prayer_api.access")

# Probed every few seconds by the platform; not worth a line each.
QUIET_PATHS = {"/health"}


def status_log_level(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        rid = request_id_var.get("")
        client_ip = request.client.host if request.client else "unknown"
        logger.log(
            status_log_level(response.status_code),
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            response.status_code,
            duration_ms,
            rid,
            client_ip,
        )
        return response
