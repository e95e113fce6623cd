"""
Structured error handling and response formatting.
Provides consistent error responses with error codes and context.
"""

from typing import Optional, Dict, Any
import logging

from shared_utils.constants import ErrorCode, LogScope
from shared_utils.logging_utils import get_scoped_logger


class AppException(Exception):
    """Base exception for application errors."""

    def __init__(
        self,
        error_code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        http_status: int = 500
    ):
        self.error_code = error_code
        self.message = message
        self.context = context or {}
        self.http_status = http_status
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to response dictionary."""
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.message,
                "context": self.context
            }
        }


class ValidationError(AppException):
    """Validation/input error."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.INVALID_INPUT.value,
            message=message,
            context=context,
            http_status=400
        )


class ConfigurationError(AppException):
    """Configuration error."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.INVALID_CONFIG.value,
            message=message,
            context=context,
            http_status=500
        )


class NotConfiguredError(AppException):
    """An optional collaborator (LLM, speech) was requested but is not configured."""

    def __init__(self, collaborator: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.NOT_CONFIGURED.value,
            message=f"{collaborator} is not configured",
            context={**(context or {}), "collaborator": collaborator},
            http_status=503
        )


class NotFoundError(AppException):
    """Referenced record does not exist."""

    def __init__(self, resource: str, resource_id: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.NOT_FOUND.value,
            message=f"{resource} {resource_id} not found",
            context={**(context or {}), "resource": resource, "id": resource_id},
            http_status=404
        )


class InvalidStateError(AppException):
    """Requested state transition is not allowed."""

    def __init__(
        self,
        message: str,
        current: Optional[str] = None,
        requested: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = {**(context or {})}
        if current is not None:
            ctx["current"] = current
        if requested is not None:
            ctx["requested"] = requested
        super().__init__(
            error_code=ErrorCode.INVALID_STATE.value,
            message=message,
            context=ctx,
            http_status=409
        )


class AuthExpiredError(AppException):
    """Platform credentials are missing, inactive or expired."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.AUTH_EXPIRED.value,
            message=message,
            context=context,
            http_status=401
        )


class SignatureInvalidError(AppException):
    """Inbound webhook failed authenticity verification."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.SIGNATURE_INVALID.value,
            message=message,
            context=context,
            http_status=401
        )


class CollaboratorError(AppException):
    """External collaborator (platform API, speech, LLM) failed or returned garbage."""

    def __init__(
        self,
        service: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error_code: str = ErrorCode.COLLABORATOR_FAILED.value,
        http_status: int = 502,
    ):
        super().__init__(
            error_code=error_code,
            message=f"{service} failed: {message}",
            context={**(context or {}), "service": service},
            http_status=http_status
        )


class RateLimitedError(CollaboratorError):
    """Collaborator asked us to slow down."""

    def __init__(
        self,
        service: str,
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = {**(context or {})}
        if retry_after is not None:
            ctx["retry_after"] = retry_after
        super().__init__(
            service,
            "rate limited",
            context=ctx,
            error_code=ErrorCode.RATE_LIMITED.value,
            http_status=429,
        )


class ExternalServiceError(AppException):
    """Storage backend unavailable error."""

    def __init__(self, service: str, message: str, context: Optional[Dict[str, Any]] = None):
        full_message = f"{service} unavailable: {message}"
        super().__init__(
            error_code=ErrorCode.STORAGE_ERROR.value,
            message=full_message,
            context={**(context or {}), "service": service},
            http_status=503
        )


def log_exception(
    exc: Exception,
    scope: str = LogScope.ERROR_HANDLER,
    logger: Optional[logging.Logger] = None
) -> None:
    """Log exception with structured context.

    Args:
        exc: Exception to log
        scope: Log scope identifier
        logger: Optional custom logger (uses structlog if not provided)
    """
    if logger is None:
        logger = get_scoped_logger(scope)

    if isinstance(exc, AppException):
        logger.error(
            "app_exception",
            error_code=exc.error_code,
            message=exc.message,
            http_status=exc.http_status,
            context=exc.context
        )
    else:
        logger.error(
            "unexpected_exception",
            error_type=type(exc).__name__,
            message=str(exc),
            traceback=True
        )


def handle_error(
    exc: Exception,
    scope: str = LogScope.ERROR_HANDLER,
    default_error_code: str = ErrorCode.EXTERNAL_SERVICE_ERROR.value
) -> Dict[str, Any]:
    """Handle exception and return structured error response.

    Args:
        exc: Exception to handle
        scope: Log scope
        default_error_code: Default error code for non-AppException errors

    Returns:
        Structured error response dictionary
    """
    log_exception(exc, scope)

    if isinstance(exc, AppException):
        return exc.to_dict()
    return {
        "success": False,
        "error": {
            "code": default_error_code,
            "message": f"An unexpected error occurred: {str(exc)}",
            "context": {"error_type": type(exc).__name__}
        }
    }
