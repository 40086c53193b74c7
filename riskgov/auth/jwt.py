"""
JWT Token Management.

HS256 access tokens carrying the tenant (organization_id) and actor.
"""

from datetime import datetime, timedelta

from jose import JWTError, jwt

from riskgov.config import settings


class TokenError(Exception):
    """Raised when token creation or validation fails."""

    pass


def create_access_token(
    user_id: str,
    organization_id: str,
    email: str = "",
    role: str = "member",
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_access_token_expire_minutes)

    now = datetime.utcnow()
    payload = {
        "user_id": str(user_id),
        "organization_id": str(organization_id),
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT access token.

    Raises TokenError on any failure.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise TokenError(f"Invalid token: {e}") from e
    if "user_id" not in payload or "organization_id" not in payload:
        raise TokenError("Token missing required claims")
    return payload
