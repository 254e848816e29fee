"""
Exception hierarchy with error codes, context, and correlation support.

Every error logs itself on construction and carries a stable error id so a
failure recorded in an ApiLog or TriggerEvent row can be matched to its log
line.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

_thread_local = threading.local()


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"
    TYPE_MISMATCH = "2003"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    CONFLICT = "3002"
    EXPIRED = "3004"

    # Business logic errors (4xxx)
    INVALID_STATE_TRANSITION = "4001"
    PERMISSION_DENIED = "4003"
    REAUTHORIZATION_REQUIRED = "4005"

    # External service errors (5xxx)
    EXTERNAL_API_ERROR = "5002"
    INTEGRATION_ERROR = "5003"
    DOWNSTREAM_ERROR = "5004"
    CREDENTIAL_CORRUPT = "5005"


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Initialize base error with rich context.

        Args:
            message: Human-readable error message
            error_code: Standardized error code from ErrorCode enum
            status_code: HTTP status code for API responses
            cause: Original exception that caused this error
            **context: Additional context information
        """
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())
        self.context = context

        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id

        self.context["error_id"] = self.error_id

        if cause:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

        super().__init__(message)

    def _log_error(self) -> None:
        """Log error with appropriate level based on status code."""
        # Lazy import, the logger module reads config which imports nothing from here
        from .utils.logger import get_logger

        logger = get_logger()

        log_data = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "context": {k: v for k, v in self.context.items() if k not in ["cause", "error_id"]},
        }

        if self.status_code >= 500:
            logger.error(f"Error {self.error_code.value}: {self.message}", extra=log_data)
        elif self.status_code >= 400:
            logger.warning(f"Client error {self.error_code.value}: {self.message}", extra=log_data)
        else:
            logger.info(f"Error {self.error_code.value}: {self.message}", extra=log_data)

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        """
        Convert to dict for API responses and persisted failure records.

        Args:
            include_cause: Include cause type and message

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        result: Dict[str, Any] = {
            "error": {
                "id": self.error_id,
                "code": self.error_code.value,
                "type": type(self).__name__,
                "message": self.message,
                "timestamp": self.timestamp,
                "context": {
                    k: v
                    for k, v in self.context.items()
                    if k not in ["cause", "error_id", "correlation_id"]
                },
            }
        }

        if "correlation_id" in self.context:
            result["error"]["correlation_id"] = self.context["correlation_id"]

        if include_cause and "cause" in self.context:
            result["error"]["cause"] = {
                "type": self.context["cause"]["type"],
                "message": self.context["cause"]["message"],
            }

        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        """Add additional context to the error (fluent interface)."""
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[Exception]:
        """Get the full chain of errors."""
        chain: List[Exception] = [self]
        current = self.cause
        while current:
            chain.append(current)
            current = getattr(current, "cause", None)
        return chain


# Layer-specific base exceptions
class RepositoryError(BaseError):
    """Repository layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Bad parameters, bad template input or a tampered state token. Never retryable."""

    retryable = False

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class ConfigError(BaseError):
    """Malformed action schema, auth configuration or server settings. Never retryable."""

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIGURATION_ERROR,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, 500, cause, **context)


class CredentialError(BaseError):
    """Base exception for credential-related errors."""

    retryable = False

    def __init__(
        self,
        message: str = "Credential error",
        error_code: ErrorCode = ErrorCode.INTEGRATION_ERROR,
        status_code: int = 401,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class CredentialNotFoundError(CredentialError):
    """Raised when a requested credential is not stored for the connection."""

    def __init__(self, message: str = "Credential not found", **kwargs):
        super().__init__(message, error_code=ErrorCode.NOT_FOUND, status_code=404, **kwargs)


class CredentialCorruptError(CredentialError):
    """Raised when stored ciphertext cannot be decrypted with the master key."""

    def __init__(self, message: str = "Credential could not be decrypted", **kwargs):
        super().__init__(
            message, error_code=ErrorCode.CREDENTIAL_CORRUPT, status_code=500, **kwargs
        )


class ReauthorizationRequiredError(CredentialError):
    """Raised when a token refresh failed and the user must authorize again."""

    def __init__(self, message: str = "Connection requires reauthorization", **kwargs):
        super().__init__(
            message, error_code=ErrorCode.REAUTHORIZATION_REQUIRED, status_code=401, **kwargs
        )


class UpstreamError(BaseError):
    """Third-party API call failed. 5xx, timeouts and network errors are retryable."""

    def __init__(
        self,
        message: str,
        retryable: bool,
        upstream_status: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        cause: Optional[Exception] = None,
        **context,
    ):
        self.retryable = retryable
        self.upstream_status = upstream_status
        context["retryable"] = retryable
        if upstream_status is not None:
            context["upstream_status"] = upstream_status
        super().__init__(message, error_code, 502, cause, **context)


class DeliveryError(BaseError):
    """Webhook endpoint unreachable or answered with a non-2xx status."""

    retryable = True

    def __init__(
        self,
        message: str,
        webhook_status: Optional[int] = None,
        response_body: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        self.webhook_status = webhook_status
        self.response_body = response_body
        if webhook_status is not None:
            context["webhook_status"] = webhook_status
        super().__init__(message, ErrorCode.DOWNSTREAM_ERROR, 502, cause, **context)


# Factory functions for common error patterns
def not_found(
    resource_type: str, cause: Optional[Exception] = None, **identifiers
) -> RepositoryError:
    """
    Factory for not found errors.

    Args:
        resource_type: Type of resource (e.g., 'Connection', 'Trigger')
        cause: Original exception if any
        **identifiers: Resource identifiers (e.g., connection_id='123')

    Returns:
        Configured RepositoryError instance with 404 status
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"{resource_type} not found"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return RepositoryError(
        message,
        error_code=ErrorCode.NOT_FOUND,
        status_code=404,
        cause=cause,
        resource_type=resource_type,
        **identifiers,
    )


def duplicate(
    resource_type: str, cause: Optional[Exception] = None, **identifiers
) -> RepositoryError:
    """Factory for duplicate resource errors (409)."""
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"Duplicate {resource_type}"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return RepositoryError(
        message,
        error_code=ErrorCode.DUPLICATE,
        status_code=409,
        cause=cause,
        resource_type=resource_type,
        **identifiers,
    )


def validation_failed(
    field: str, value: Any, reason: str, cause: Optional[Exception] = None
) -> ValidationError:
    """Factory for field validation errors."""
    return ValidationError(
        f"Validation failed for {field}: {reason}",
        field=field,
        error_code=ErrorCode.TYPE_MISMATCH,
        cause=cause,
        value=repr(value)[:100],
        reason=reason,
    )


def missing_required(field: str) -> ValidationError:
    """Factory for the missing required field error."""
    return ValidationError(
        f"missing required field: {field}",
        field=field,
        error_code=ErrorCode.MISSING_REQUIRED,
    )


def is_retryable(error: Exception) -> bool:
    """Whether a failure may succeed if attempted again later."""
    return bool(getattr(error, "retryable", False))


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation ID."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation ID."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
