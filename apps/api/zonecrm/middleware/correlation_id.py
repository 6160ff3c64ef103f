from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from zonecrm.context import RequestOrigin, reset_correlation_id, set_correlation_id


_MAX_CORRELATION_ID = 128


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the correlation id and client origin that audit rows record."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = request.headers.get("x-correlation-id", "").strip()
        correlation_id = incoming[:_MAX_CORRELATION_ID] if incoming else str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        request.state.origin = RequestOrigin(
            ip_address=request.client.host if request.client is not None else None,
            user_agent=request.headers.get("user-agent"),
        )
        token = set_correlation_id(correlation_id)
        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)

        response.headers["x-correlation-id"] = correlation_id
        return response
