"""Core domain logic for rx-caller."""

from rx_caller.core.exceptions import (
    RxCallerError,
    DatabaseError,
    RecordNotFoundError,
    CallNotFoundError,
    PatientNotFoundError,
    ScheduleNotFoundError,
    DispatchError,
    DispatchTimeoutError,
    LifecycleError,
    InvalidTransitionError,
    CallAlreadyTerminalError,
    ConcurrentUpdateError,
    ScheduleError,
    CampaignValidationError,
    WebhookError,
    WebhookPayloadError,
    WebhookSecurityError,
    InvalidSignatureError,
    WebhookNotConfiguredError,
    ConfigurationError,
    wrap_exception,
)
from rx_caller.core.state_machine import (
    AttemptOutcome,
    CallEvent,
    CallStatus,
    ScheduleStatus,
    transition,
)

__all__ = [
    # State machine
    "AttemptOutcome",
    "CallEvent",
    "CallStatus",
    "ScheduleStatus",
    "transition",
    # Exceptions
    "RxCallerError",
    "DatabaseError",
    "RecordNotFoundError",
    "CallNotFoundError",
    "PatientNotFoundError",
    "ScheduleNotFoundError",
    "DispatchError",
    "DispatchTimeoutError",
    "LifecycleError",
    "InvalidTransitionError",
    "CallAlreadyTerminalError",
    "ConcurrentUpdateError",
    "ScheduleError",
    "CampaignValidationError",
    "WebhookError",
    "WebhookPayloadError",
    "WebhookSecurityError",
    "InvalidSignatureError",
    "WebhookNotConfiguredError",
    "ConfigurationError",
    "wrap_exception",
]
