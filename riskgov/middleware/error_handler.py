"""
Global Error Handler Middleware.

Last line of defence for exceptions no handler claimed. Domain errors
(RiskGovError) are mapped to 4xx by the exception handlers registered in
riskgov.main; anything reaching this middleware is a bug and is returned
as a generic 500 with an error_id for log correlation. Never leaks stack
traces or database errors to clients.
"""

import traceback
import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from riskgov.config import settings

logger = structlog.get_logger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            error_id = str(uuid.uuid4())
            logger.error(
                "unhandled_exception",
                error_id=error_id,
                path=request.url.path,
                method=request.method,
                error=str(exc),
                traceback=traceback.format_exc(),
            )
            body: dict = {
                "error": "An internal error occurred. Please try again later.",
                "error_id": error_id,
                "status": 500,
            }
            if settings.debug:
                body["debug_hint"] = type(exc).__name__
            return JSONResponse(status_code=500, content=body)
