"""
Tenant Middleware.

Reads the Bearer token and attaches the tenant to request.state:
  organization_id, user_id, user_email, user_role

Every engine query filters by request.state.organization_id, so a request
without a valid token never reaches a router.
"""

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from riskgov.auth.jwt import TokenError, decode_token

logger = structlog.get_logger(__name__)

PUBLIC_PATHS = frozenset({
    "/health",
    "/ready",
    "/docs",
    "/openapi.json",
    "/redoc",
})


def _unauthorized(detail: str) -> Response:
    return Response(
        status_code=401,
        content=f'{{"detail":"{detail}"}}',
        media_type="application/json",
    )


class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS" or request.url.path.rstrip("/") in PUBLIC_PATHS:
            return await call_next(request)

        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer "):
            return _unauthorized("Missing authentication token")

        try:
            payload = decode_token(auth[7:])
        except TokenError as e:
            logger.warning("tenant_auth_failed", error=str(e), path=request.url.path)
            return _unauthorized("Invalid or expired token")

        request.state.organization_id = payload["organization_id"]
        request.state.user_id = payload["user_id"]
        request.state.user_email = payload.get("email", "")
        request.state.user_role = payload.get("role", "member")
        structlog.contextvars.bind_contextvars(organization_id=payload["organization_id"])

        return await call_next(request)
