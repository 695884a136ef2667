"""
AFFILIFY - Request Context & Security Headers Middleware
Tags every request with an ID, reports its latency, and hardens responses.
"""
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Assigns ``request.state.request_id`` and decorates every response.

    Headers applied:
      - X-Request-ID / X-Response-Time
      - X-Content-Type-Options, X-Frame-Options, X-XSS-Protection
      - Referrer-Policy
      - Cache-Control: no-store on API responses
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = (
            f"{(time.perf_counter() - started) * 1000:.0f}ms"
        )

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = (
                "no-store, no-cache, must-revalidate, max-age=0"
            )
            response.headers["Pragma"] = "no-cache"

        return response
