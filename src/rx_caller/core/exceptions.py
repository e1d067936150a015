"""rx-caller Exception Hierarchy.

Provides structured error handling with context preservation
and proper HTTP status code mapping.
"""

from __future__ import annotations

from typing import Any


class RxCallerError(Exception):
    """Base exception for all rx-caller errors.

    All custom exceptions should inherit from this class.
    Provides:
    - Structured error context
    - HTTP status code mapping
    - Logging-friendly representation
    """

    status_code: int = 500
    error_code: str = "RX_CALLER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Additional context for debugging
            cause: Original exception if wrapping
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        result: dict[str, Any] = {
            "success": False,
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        """String representation for logging."""
        parts = [f"{self.error_code}: {self.message}"]
        if self.details:
            parts.append(f"details={self.details}")
        if self.cause:
            parts.append(f"cause={self.cause}")
        return " | ".join(parts)


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(RxCallerError):
    """Base class for database-related errors."""

    status_code = 503
    error_code = "DATABASE_ERROR"


class RecordNotFoundError(DatabaseError):
    """Requested record not found."""

    status_code = 404
    error_code = "RECORD_NOT_FOUND"


class CallNotFoundError(RecordNotFoundError):
    """Call with given ID not found."""

    error_code = "CALL_NOT_FOUND"


class PatientNotFoundError(RecordNotFoundError):
    """Patient with given ID not found."""

    error_code = "PATIENT_NOT_FOUND"


class ScheduleNotFoundError(RecordNotFoundError):
    """Scheduled call campaign not found."""

    error_code = "SCHEDULE_NOT_FOUND"


# =============================================================================
# Dispatch Errors
# =============================================================================


class DispatchError(RxCallerError):
    """Outbound dispatch gateway failed to originate a call."""

    status_code = 502
    error_code = "DISPATCH_ERROR"


class DispatchTimeoutError(DispatchError):
    """Dispatch gateway did not answer within the configured timeout."""

    status_code = 504
    error_code = "DISPATCH_TIMEOUT"


# =============================================================================
# Lifecycle Errors
# =============================================================================


class LifecycleError(RxCallerError):
    """Base class for call and campaign state errors."""

    status_code = 409
    error_code = "LIFECYCLE_ERROR"


class InvalidTransitionError(LifecycleError):
    """Requested transition is not part of the call state graph."""

    error_code = "INVALID_TRANSITION"


class CallAlreadyTerminalError(InvalidTransitionError):
    """Call already reached COMPLETED, FAILED or CANCELLED."""

    error_code = "CALL_ALREADY_TERMINAL"


class ConcurrentUpdateError(LifecycleError):
    """A conditional write lost against a concurrent writer."""

    error_code = "CONCURRENT_UPDATE"


class ScheduleError(LifecycleError):
    """Campaign state does not permit the requested operation."""

    error_code = "SCHEDULE_ERROR"


class CampaignValidationError(ScheduleError):
    """Campaign parameters outside the accepted ranges."""

    status_code = 422
    error_code = "INVALID_SCHEDULE"


# =============================================================================
# Webhook Errors
# =============================================================================


class WebhookError(RxCallerError):
    """Base class for inbound webhook errors."""

    status_code = 400
    error_code = "WEBHOOK_ERROR"


class WebhookPayloadError(WebhookError):
    """Webhook body could not be parsed into an event envelope."""

    error_code = "INVALID_PAYLOAD"


class WebhookSecurityError(WebhookError):
    """Webhook authenticity could not be established."""

    status_code = 401
    error_code = "WEBHOOK_SECURITY_ERROR"


class InvalidSignatureError(WebhookSecurityError):
    """Webhook signature missing or not matching the body."""

    error_code = "INVALID_SIGNATURE"


class WebhookNotConfiguredError(WebhookSecurityError):
    """Server has no webhook secret in an environment that requires one."""

    status_code = 500
    error_code = "WEBHOOK_NOT_CONFIGURED"


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(RxCallerError):
    """Invalid or incomplete configuration."""

    error_code = "CONFIGURATION_ERROR"


# =============================================================================
# Utility Functions
# =============================================================================


def wrap_exception(
    exc: Exception,
    wrapper_class: type[RxCallerError] = RxCallerError,
    message: str | None = None,
    **details: Any,
) -> RxCallerError:
    """Wrap a generic exception in an RxCallerError.

    Args:
        exc: Original exception to wrap
        wrapper_class: RxCallerError subclass to use
        message: Override message (defaults to str(exc))
        **details: Additional context details

    Returns:
        Wrapped RxCallerError instance
    """
    return wrapper_class(
        message=message or str(exc),
        details=details or None,
        cause=exc,
    )
