"""
Logging middleware for request/response logging.

Logs all HTTP requests with timing and context, and feeds the request
metrics.
"""
import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from playgram.routes.metrics import track_request

logger = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.

    Adds: owner_id, route, method, duration_ms, status to every log.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "request_failed",
                owner_id=getattr(request.state, "owner_id", None),
                route=request.url.path,
                method=request.method,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e),
            )
            track_request(request.method, self._endpoint(request), 500, duration_ms / 1000)
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        # owner_id is only known once the auth dependency has run
        logger.info(
            "request_completed",
            owner_id=getattr(request.state, "owner_id", None),
            route=request.url.path,
            method=request.method,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        track_request(request.method, self._endpoint(request), response.status_code, duration_ms / 1000)

        return response

    @staticmethod
    def _endpoint(request: Request) -> str:
        # Route template keeps label cardinality bounded
        route = request.scope.get("route")
        return getattr(route, "path", request.url.path)
