from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from zonecrm.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("zonecrm.request")


def _record(request: Request, status_code: int, started: float, *, failed: bool = False) -> None:
    elapsed = time.perf_counter() - started
    # the route template is only known once routing has run
    path = resolve_http_path_label(request)
    observe_http_request(method=request.method, path=path, status=status_code, duration=elapsed)
    extra = {
        "method": request.method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(elapsed * 1000, 2),
        "user_id": getattr(request.state, "user_id", None),
    }
    if failed:
        logger.error("http.error", exc_info=True, extra=extra)
    else:
        logger.info("http.request", extra=extra)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line and one metric sample per request, including unhandled errors."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            _record(request, 500, started, failed=True)
            raise
        _record(request, response.status_code, started)
        return response
