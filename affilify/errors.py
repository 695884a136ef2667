"""
AFFILIFY - Error Taxonomy & Response Envelope

Every route that passes through the admission layer reports failures as an
``AppError`` subclass. The handlers registered by ``register_error_handlers``
turn them into one JSON shape:

    {
      "success": false,
      "error": {
        "message": "...",
        "type": "RATE_LIMIT_ERROR",
        "timestamp": "2026-01-01T00:00:00+00:00",
        "requestId": "...",
        "details": {...}          # outside production only
      }
    }
"""
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("affilify.errors")

GENERIC_SERVER_MESSAGE = "Something went wrong. Please try again later."
INVALID_TOKEN_MESSAGE = "Invalid or expired authentication token"


class ErrorType(str, enum.Enum):
    VALIDATION = "VALIDATION_ERROR"
    AUTHENTICATION = "AUTHENTICATION_ERROR"
    AUTHORIZATION = "AUTHORIZATION_ERROR"
    NOT_FOUND = "NOT_FOUND_ERROR"
    RATE_LIMIT = "RATE_LIMIT_ERROR"
    DATABASE = "DATABASE_ERROR"
    EXTERNAL_API = "EXTERNAL_API_ERROR"
    PAYMENT = "PAYMENT_ERROR"
    SERVER = "SERVER_ERROR"


class DenialReason(str, enum.Enum):
    """Why the authentication gate refused a request (logged, not exposed)."""

    NO_CREDENTIAL = "no_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    PRINCIPAL_GONE = "principal_gone"
    INSUFFICIENT_PLAN = "insufficient_plan"


# ═══════════════════════════════════════════════════════
#  Exceptions
# ═══════════════════════════════════════════════════════


class AppError(Exception):
    """Operational error that maps onto an HTTP response."""

    error_type = ErrorType.SERVER
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        error_type: Optional[ErrorType] = None,
        status_code: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if error_type is not None:
            self.error_type = error_type
        if status_code is not None:
            self.status_code = status_code
        self.metadata = metadata or {}
        self.headers = headers or {}
        self.timestamp = datetime.now(timezone.utc)


class AuthenticationDenied(AppError):
    error_type = ErrorType.AUTHENTICATION
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, reason: DenialReason, message: Optional[str] = None):
        if message is None:
            message = (
                "Authentication required"
                if reason is DenialReason.NO_CREDENTIAL
                else INVALID_TOKEN_MESSAGE
            )
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})
        self.reason = reason


class PlanRequired(AppError):
    error_type = ErrorType.AUTHORIZATION
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, required: str, current: str):
        super().__init__(
            f"{required.capitalize()} plan required for this feature",
            metadata={"required_plan": required, "current_plan": current},
        )
        self.reason = DenialReason.INSUFFICIENT_PLAN


class RateLimitExceeded(AppError):
    error_type = ErrorType.RATE_LIMIT
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str = "Rate limit exceeded", headers=None):
        super().__init__(message, headers=headers)


class ServiceUnavailable(AppError):
    error_type = ErrorType.EXTERNAL_API
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, service: str, message: Optional[str] = None):
        super().__init__(
            message or f"External service {service} unavailable",
            metadata={"service": service},
        )


class StoreUnavailable(Exception):
    """The window store could not be reached. Never surfaced to clients."""


# ═══════════════════════════════════════════════════════
#  Envelope
# ═══════════════════════════════════════════════════════


def error_envelope(
    *,
    message: str,
    error_type: ErrorType,
    request_id: Optional[str],
    details: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "message": message,
        "type": error_type.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "requestId": request_id,
    }
    if details:
        body["details"] = details
    return {"success": False, "error": body}


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    error_type: ErrorType,
    details: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    settings = request.app.state.settings
    if settings.is_production:
        details = None
        if status_code >= 500 and error_type is ErrorType.SERVER:
            message = GENERIC_SERVER_MESSAGE

    request_id = _request_id(request)
    response = JSONResponse(
        status_code=status_code,
        content=error_envelope(
            message=message,
            error_type=error_type,
            request_id=request_id,
            details=details,
        ),
        headers=headers,
    )
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    details = {"type": exc.error_type.value, "metadata": exc.metadata}
    return _error_response(
        request,
        exc.status_code,
        exc.message,
        exc.error_type,
        details=details,
        headers=exc.headers,
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return _error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "Invalid request payload",
        ErrorType.VALIDATION,
        details={"errors": errors},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error on %s %s [%s]",
        request.method, request.url.path, _request_id(request),
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        ErrorType.SERVER,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
