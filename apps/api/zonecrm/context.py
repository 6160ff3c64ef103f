from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass

from starlette.requests import Request

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


@dataclass(frozen=True, slots=True)
class RequestOrigin:
    """Client attributes recorded on audit entries."""

    ip_address: str | None = None
    user_agent: str | None = None


def get_request_origin(request: Request) -> RequestOrigin:
    origin = getattr(request.state, "origin", None)
    if isinstance(origin, RequestOrigin):
        return origin
    client_host = request.client.host if request.client is not None else None
    return RequestOrigin(ip_address=client_host, user_agent=request.headers.get("user-agent"))
