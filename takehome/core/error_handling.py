"""
Error taxonomy and FastAPI exception handlers.

Every failure the API reports is an ``ApplicationError`` subclass. Subclasses
declare their wire code, HTTP status and classification as class attributes;
``ErrorHandler`` turns any of them into the same JSON body and logs it at a
level derived from its severity.
"""
import logging
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException

from takehome.core.config import settings
from takehome.core.logging_config import client_ip_from_headers


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    BUSINESS_LOGIC = "business_logic"
    EXTERNAL_SERVICE = "external_service"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class ErrorResponse(BaseModel):
    """JSON body of every error response"""
    error: str = Field(..., description="Stable error code, e.g. invalid_transition")
    message: str = Field(..., description="Developer-facing description")
    details: Optional[Dict[str, Any]] = Field(None, description="Structured context such as the transition reason")
    retryable: bool = Field(False, description="Whether the client may retry the same request")
    request_id: str = Field(..., description="Correlates the response with server logs")
    timestamp: str
    category: ErrorCategory
    severity: ErrorSeverity
    user_message: Optional[str] = Field(None, description="Text safe to show to a candidate or employer")
    suggested_action: Optional[str] = None
    # Only populated for 5xx responses when DEBUG is on
    stack_trace: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "invalid_transition",
                "message": "Cannot submit a submission that is pending",
                "details": {"reason": "submit_not_allowed_from_pending", "status": "pending", "event": "submit"},
                "retryable": False,
                "request_id": "3f0b6a52-9a43-4a1e-9f57-1d7f3b0c2a11",
                "timestamp": "2025-01-15T10:30:00+00:00",
                "category": "business_logic",
                "severity": "low",
                "user_message": "This action is not available for the assessment right now.",
            }
        }
    }


class ValidationErrorDetail(BaseModel):
    field: str
    message: str
    code: str


class ApplicationError(Exception):
    """Base class. Keyword arguments override the subclass defaults."""

    error_code: str = "application_error"
    status_code: int = 500
    category: ErrorCategory = ErrorCategory.SYSTEM
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    retryable: bool = False
    user_message: Optional[str] = None
    suggested_action: Optional[str] = None

    def __init__(
        self,
        error_code: Optional[str] = None,
        message: str = "Application error",
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
        user_message: Optional[str] = None,
        suggested_action: Optional[str] = None,
    ):
        if error_code is not None:
            self.error_code = error_code
        if category is not None:
            self.category = category
        if severity is not None:
            self.severity = severity
        if status_code is not None:
            self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable
        if user_message is not None:
            self.user_message = user_message
        if suggested_action is not None:
            self.suggested_action = suggested_action
        self.message = message
        self.details = details or {}
        self.request_id = str(uuid.uuid4())
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message)


class ValidationError(ApplicationError):
    error_code = "validation_failed"
    status_code = 422
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW
    suggested_action = "Check the highlighted fields and try again."

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[ValidationErrorDetail]] = None,
        user_message: str = "Some of the submitted fields are invalid.",
    ):
        super().__init__(
            message=message,
            details={"field_errors": [e.model_dump() for e in (field_errors or [])]},
            user_message=user_message,
        )


class AuthenticationError(ApplicationError):
    """Missing or invalid employer bearer token"""

    error_code = "authentication_failed"
    status_code = 401
    category = ErrorCategory.AUTHENTICATION
    user_message = "Please sign in again."

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, details=details)


class InvalidPayloadError(ApplicationError):
    """Request body is authentic but unusable (e.g. webhook without conversation_id)."""

    error_code = "invalid_payload"
    status_code = 400
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, details=details)


class NotFoundError(ApplicationError):
    error_code = "resource_not_found"
    status_code = 404
    category = ErrorCategory.NOT_FOUND
    severity = ErrorSeverity.LOW
    user_message = "The requested item could not be found."

    def __init__(self, resource_type: str, resource_id: Optional[Union[str, int]] = None):
        message = f"{resource_type} not found"
        if resource_id:
            message += f" (ID: {resource_id})"
        super().__init__(message=message, details={"resource_type": resource_type, "resource_id": resource_id})


class InvalidTransitionError(ApplicationError):
    """A state change was requested that the current status does not allow.

    ``reason`` is a stable machine-readable code, e.g.
    ``submit_not_allowed_from_pending`` or ``github_link_required``.
    """

    error_code = "invalid_transition"
    status_code = 409
    category = ErrorCategory.BUSINESS_LOGIC
    severity = ErrorSeverity.LOW
    user_message = "This action is not available for the assessment right now."
    suggested_action = "Reload the page to see the current status."

    def __init__(self, reason: str, message: str, status: Optional[str] = None, event: Optional[str] = None):
        details: Dict[str, Any] = {"reason": reason}
        if status is not None:
            details["status"] = status
        if event is not None:
            details["event"] = event
        super().__init__(message=message, details=details)
        self.reason = reason


class NotReadyError(ApplicationError):
    """A prerequisite is still being produced; the client should poll and retry."""

    error_code = "not_ready"
    status_code = 409
    category = ErrorCategory.BUSINESS_LOGIC
    severity = ErrorSeverity.LOW
    retryable = True
    user_message = "Your interview is still being prepared."
    suggested_action = "Wait a few seconds and try again."

    def __init__(self, message: str = "Interview questions not ready", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, details=details)


class SignatureInvalidError(ApplicationError):
    error_code = "signature_invalid"
    status_code = 401
    category = ErrorCategory.AUTHENTICATION

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message=message)


class ReplayDetectedError(ApplicationError):
    error_code = "replay_detected"
    status_code = 401
    category = ErrorCategory.AUTHENTICATION

    def __init__(self, message: str = "Webhook timestamp outside tolerance", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, details=details)


class WebhookConfigurationError(ApplicationError):
    error_code = "webhook_not_configured"
    severity = ErrorSeverity.CRITICAL

    def __init__(self, message: str = "Webhook secret is not configured"):
        super().__init__(message=message)


class UpstreamFailureError(ApplicationError):
    """The AI provider failed or returned unusable output."""

    error_code = "upstream_failure"
    status_code = 502
    category = ErrorCategory.EXTERNAL_SERVICE
    severity = ErrorSeverity.HIGH
    retryable = True
    user_message = "An external service had a temporary problem."
    suggested_action = "Please try again in a minute."

    def __init__(self, service: str, message: str, service_status_code: Optional[int] = None):
        super().__init__(
            message=message,
            details={"service": service, "service_status_code": service_status_code},
        )


class SubmissionLimitError(ApplicationError):
    error_code = "SUBSCRIPTION_LIMIT_REACHED"
    status_code = 403
    category = ErrorCategory.AUTHORIZATION
    severity = ErrorSeverity.LOW
    user_message = "You have reached the submission limit of the free plan."
    suggested_action = "Upgrade your subscription to invite more candidates."

    def __init__(self, limit: int, used: int):
        super().__init__(
            message=f"Free tier allows {limit} submissions; {used} already created",
            details={"limit": limit, "used": used},
        )


class ForbiddenError(ApplicationError):
    status_code = 403
    category = ErrorCategory.AUTHORIZATION
    severity = ErrorSeverity.LOW

    def __init__(self, error_code: str, message: str):
        super().__init__(error_code=error_code, message=message)


def _http_classification(status_code: int) -> tuple[ErrorCategory, ErrorSeverity]:
    if status_code >= 500:
        return ErrorCategory.SYSTEM, ErrorSeverity.CRITICAL
    category = {
        401: ErrorCategory.AUTHENTICATION,
        403: ErrorCategory.AUTHORIZATION,
        404: ErrorCategory.NOT_FOUND,
    }.get(status_code, ErrorCategory.VALIDATION)
    severity = ErrorSeverity.MEDIUM if status_code in (401, 403) else ErrorSeverity.LOW
    return category, severity


class ErrorHandler:
    """Renders ApplicationError (and anything else that escapes a route) as ErrorResponse JSON"""

    def __init__(self):
        self.logger = logging.getLogger("errors")

    async def handle_application_error(self, request: Request, error: ApplicationError) -> JSONResponse:
        self._log_error(request, error)

        body = ErrorResponse(
            error=error.error_code,
            message=error.message,
            details=error.details or None,
            retryable=error.retryable,
            request_id=error.request_id,
            timestamp=error.timestamp.isoformat(),
            category=error.category,
            severity=error.severity,
            user_message=error.user_message,
            suggested_action=error.suggested_action,
        )
        if settings.debug and error.status_code >= 500:
            body.stack_trace = traceback.format_exc()

        return JSONResponse(status_code=error.status_code, content=body.model_dump(mode="json", exclude_none=True))

    async def handle_http_exception(self, request: Request, exc: HTTPException) -> JSONResponse:
        """Unknown routes, wrong methods and other framework-level HTTP errors"""
        category, severity = _http_classification(exc.status_code)
        error = ApplicationError(
            error_code=f"http_{exc.status_code}",
            message=str(exc.detail),
            category=category,
            severity=severity,
            status_code=exc.status_code,
        )
        return await self.handle_application_error(request, error)

    async def handle_validation_exception(self, request: Request, exc: RequestValidationError) -> JSONResponse:
        field_errors = [
            ValidationErrorDetail(
                field=".".join(str(part) for part in err["loc"]),
                message=err["msg"],
                code=err["type"],
            )
            for err in exc.errors()
        ]
        return await self.handle_application_error(
            request, ValidationError(message="Request validation failed", field_errors=field_errors)
        )

    async def handle_generic_exception(self, request: Request, exc: Exception) -> JSONResponse:
        error = ApplicationError(
            error_code="internal_server_error",
            message="An unexpected error occurred",
            severity=ErrorSeverity.CRITICAL,
            details={"exception_type": type(exc).__name__},
            user_message="Something went wrong on our side.",
            suggested_action="Please try again in a few minutes.",
        )
        self.logger.error(
            "Unhandled exception",
            extra={
                "request_id": error.request_id,
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=exc,
        )
        return await self.handle_application_error(request, error)

    def _log_error(self, request: Request, error: ApplicationError):
        log_data = {
            "request_id": error.request_id,
            "error_code": error.error_code,
            "category": error.category.value,
            "severity": error.severity.value,
            "status_code": error.status_code,
            "path": request.url.path,
            "method": request.method,
            "client_ip": client_ip_from_headers(request.headers, request.client.host if request.client else None),
        }
        reason = error.details.get("reason") if error.details else None
        if reason:
            log_data["reason"] = reason
        self.logger.log(_LOG_LEVELS[error.severity], error.message, extra=log_data)


error_handler = ErrorHandler()


# Registered on the app in main.py
async def application_error_handler(request: Request, exc: ApplicationError):
    return await error_handler.handle_application_error(request, exc)


async def http_exception_handler(request: Request, exc: HTTPException):
    return await error_handler.handle_http_exception(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return await error_handler.handle_validation_exception(request, exc)


async def generic_exception_handler(request: Request, exc: Exception):
    return await error_handler.handle_generic_exception(request, exc)
