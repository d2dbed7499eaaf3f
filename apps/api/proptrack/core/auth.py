from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from proptrack.core.config import get_settings


class AuthenticationError(Exception):
    """Raised when a request carries no usable bearer token."""


@dataclass
class AuthUser:
    sub: str
    role: str | None


def issue_token(sub: str, role: str | None) -> str:
    settings = get_settings()
    claims = {"sub": sub}
    if role is not None:
        claims["role"] = role
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header[len("Bearer ") :].strip() if auth_header.startswith("Bearer ") else ""
    if not token:
        raise AuthenticationError("Missing bearer token")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise AuthenticationError("Invalid bearer token") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AuthenticationError("Token has no subject")
    role = payload.get("role")
    request.state.user_id = subject
    return AuthUser(sub=subject, role=str(role) if role is not None else None)
