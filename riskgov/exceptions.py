"""
Custom exceptions for RiskGov.

Provides structured error handling with recovery hints and error codes.
Every error carries the HTTP status it maps to; the FastAPI exception
handler registered by register_exception_handlers turns it into a JSON
response via to_dict().
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes for RiskGov."""
    # General errors (1xxx)
    UNKNOWN_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    CONFIGURATION_ERROR = "E1002"

    # Data errors (2xxx)
    DATA_NOT_FOUND = "E2000"

    # State errors (3xxx)
    INVALID_TRANSITION = "E3000"
    THRESHOLDS_LOCKED = "E3001"
    RECALCULATION_IN_PROGRESS = "E3002"


@dataclass
class RecoveryHint:
    """A hint for recovering from an error."""
    action: str
    description: str
    auto_retry: bool = False
    retry_delay_seconds: int = 0


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    organization_id: Optional[str] = None
    request_id: Optional[str] = None
    additional: Dict[str, Any] = field(default_factory=dict)


class RiskGovError(Exception):
    """
    Base exception for RiskGov.

    All custom exceptions should inherit from this class.
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        recovery_hint: Optional[RecoveryHint] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.recovery_hint = recovery_hint
        self.context = context or ErrorContext()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
            "timestamp": self.context.timestamp.isoformat(),
        }

        if self.recovery_hint:
            result["recovery"] = {
                "action": self.recovery_hint.action,
                "description": self.recovery_hint.description,
                "auto_retry": self.recovery_hint.auto_retry,
            }

        if self.context.additional:
            result["details"] = self.context.additional

        return result

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


class ValidationError(RiskGovError):
    """Input outside its valid domain (scores, likelihood, thresholds, notes)."""

    http_status = 422

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs,
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            recovery_hint=RecoveryHint(
                action="fix_input",
                description="Check and fix the invalid input field",
            ),
            **kwargs,
        )
        self.field = field
        self.value = value
        if field:
            self.context.additional.setdefault("field", field)


class DataNotFoundError(RiskGovError):
    """Requested entity does not exist within the caller's organization."""

    http_status = 404

    def __init__(self, entity: str, entity_id: Any, **kwargs):
        super().__init__(
            message=f"{entity} {entity_id} not found",
            error_code=ErrorCode.DATA_NOT_FOUND,
            **kwargs,
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(RiskGovError):
    """Breach or exception status change not permitted from the current state."""

    http_status = 409

    def __init__(self, entity: str, current: str, target: str, message: Optional[str] = None, **kwargs):
        super().__init__(
            message=message or f"Cannot move {entity} from {current} to {target}",
            error_code=ErrorCode.INVALID_TRANSITION,
            recovery_hint=RecoveryHint(
                action="reload",
                description="Reload the record; it may have been changed by another user",
            ),
            **kwargs,
        )
        self.current = current
        self.target = target


class ThresholdsLockedError(RiskGovError):
    """Threshold edit attempted on a metric fed by a live KRI."""

    http_status = 409

    def __init__(self, metric_id: Any, **kwargs):
        super().__init__(
            message=f"Thresholds of tolerance metric {metric_id} are read-only while linked to a KRI feed",
            error_code=ErrorCode.THRESHOLDS_LOCKED,
            recovery_hint=RecoveryHint(
                action="edit_kri",
                description="Change the thresholds on the linked KRI definition instead",
            ),
            **kwargs,
        )


class RecalculationInProgressError(RiskGovError):
    """A bulk recalculation for the organization is already running."""

    http_status = 409

    def __init__(self, organization_id: Any, **kwargs):
        super().__init__(
            message=f"Recalculation already in progress for organization {organization_id}",
            error_code=ErrorCode.RECALCULATION_IN_PROGRESS,
            recovery_hint=RecoveryHint(
                action="retry_later",
                description="Wait for the running recalculation to finish",
                auto_retry=True,
                retry_delay_seconds=5,
            ),
            **kwargs,
        )


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================


async def riskgov_exception_handler(request: Request, exc: RiskGovError) -> JSONResponse:
    """Map a domain error to its HTTP status and structured body."""
    request_id = getattr(request.state, "request_id", None)
    exc.context.request_id = request_id

    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        "riskgov_error",
        error_code=exc.error_code.value,
        message=exc.message,
        status_code=exc.http_status,
        request_id=request_id,
    )

    body = exc.to_dict()
    if request_id:
        body["request_id"] = request_id
    return JSONResponse(status_code=exc.http_status, content=body)


def register_exception_handlers(app) -> None:
    """Register exception handlers with the FastAPI app."""
    app.add_exception_handler(RiskGovError, riskgov_exception_handler)
