from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi.responses import JSONResponse
from starlette.requests import Request

from zonecrm.authz.errors import AuthorizationDenied
from zonecrm.context import get_correlation_id
from zonecrm.core.auth import AuthenticationRequired


UNAUTHORIZED_CODE = "UNAUTHORIZED"


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


async def authorization_denied_handler(request: Request, exc: AuthorizationDenied) -> JSONResponse:
    decision = exc.decision
    details: dict[str, Any] = {"kind": decision.kind.value if decision.kind is not None else None}
    for key in ("capability", "role", "target_user_id", "target_zone_id", "zone_id"):
        if key in decision.details:
            details[key] = decision.details[key]
    return error_response(
        request,
        status_code=403,
        code=exc.code,
        message=decision.reason or "Permission denied",
        details=details,
    )


async def authentication_required_handler(request: Request, exc: AuthenticationRequired) -> JSONResponse:
    response = error_response(request, status_code=401, code=UNAUTHORIZED_CODE, message=exc.message)
    response.headers["WWW-Authenticate"] = "Bearer"
    return response
