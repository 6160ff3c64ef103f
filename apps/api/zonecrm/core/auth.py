from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from zonecrm.core.config import get_settings


class AuthenticationRequired(Exception):
    """No usable bearer token, or the token names no active user."""

    def __init__(self, message: str = "Authentication required") -> None:
        self.message = message
        super().__init__(message)


@dataclass
class AuthUser:
    sub: int


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        raise AuthenticationRequired("Missing bearer token")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise AuthenticationRequired("Invalid bearer token") from None

    try:
        subject = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationRequired("Invalid token subject") from None

    request.state.user_id = subject
    return AuthUser(sub=subject)
