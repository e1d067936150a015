"""Call, campaign and attempt states.

The call state graph is expressed as a pure function over a transition
table. Persistence and side effects live in
:mod:`rx_caller.services.call_lifecycle`.
"""

from __future__ import annotations

from enum import Enum

from rx_caller.core.exceptions import CallAlreadyTerminalError, InvalidTransitionError


class CallStatus(str, Enum):
    """Lifecycle status of a single outbound call."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CALL_STATUSES


class CallEvent(str, Enum):
    """Events that drive a call through its lifecycle."""

    DISPATCHED = "DISPATCHED"
    DISPATCH_FAILED = "DISPATCH_FAILED"
    PROGRESS = "PROGRESS"
    COMPLETE = "COMPLETE"
    FAIL = "FAIL"
    CANCEL = "CANCEL"


class ScheduleStatus(str, Enum):
    """Status of a retry campaign (ScheduledCall)."""

    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_SCHEDULE_STATUSES


class AttemptOutcome(str, Enum):
    """Outcome of one campaign attempt."""

    IN_PROGRESS = "IN_PROGRESS"
    ANSWERED = "ANSWERED"
    FAILED = "FAILED"


TERMINAL_CALL_STATUSES = frozenset(
    {CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.CANCELLED}
)
OPEN_CALL_STATUSES = frozenset({CallStatus.PENDING, CallStatus.IN_PROGRESS})

TERMINAL_SCHEDULE_STATUSES = frozenset(
    {ScheduleStatus.COMPLETED, ScheduleStatus.FAILED, ScheduleStatus.CANCELLED}
)
ACTIVE_SCHEDULE_STATUSES = frozenset({ScheduleStatus.SCHEDULED, ScheduleStatus.RUNNING})


_TRANSITIONS: dict[tuple[CallStatus, CallEvent], CallStatus] = {
    # PENDING: dispatch acknowledgement keeps the call pending
    (CallStatus.PENDING, CallEvent.DISPATCHED): CallStatus.PENDING,
    (CallStatus.PENDING, CallEvent.DISPATCH_FAILED): CallStatus.FAILED,
    (CallStatus.PENDING, CallEvent.PROGRESS): CallStatus.IN_PROGRESS,
    # call-ended may arrive before call-started
    (CallStatus.PENDING, CallEvent.COMPLETE): CallStatus.COMPLETED,
    (CallStatus.PENDING, CallEvent.FAIL): CallStatus.FAILED,
    (CallStatus.PENDING, CallEvent.CANCEL): CallStatus.CANCELLED,
    # IN_PROGRESS
    (CallStatus.IN_PROGRESS, CallEvent.PROGRESS): CallStatus.IN_PROGRESS,
    (CallStatus.IN_PROGRESS, CallEvent.COMPLETE): CallStatus.COMPLETED,
    (CallStatus.IN_PROGRESS, CallEvent.FAIL): CallStatus.FAILED,
}


def transition(current: CallStatus | str, event: CallEvent | str) -> CallStatus:
    """Compute the next call status.

    Args:
        current: Status the call is in now
        event: Event being applied

    Returns:
        The resulting status (may equal ``current``)

    Raises:
        CallAlreadyTerminalError: If ``current`` is terminal
        InvalidTransitionError: If the event is not allowed from ``current``
    """
    current = CallStatus(current)
    event = CallEvent(event)

    if current.is_terminal:
        raise CallAlreadyTerminalError(
            f"Call is already {current.value}",
            details={"status": current.value, "event": event.value},
        )

    target = _TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(
            f"Event {event.value} not allowed from {current.value}",
            details={"status": current.value, "event": event.value},
        )
    return target


def event_for_target(target: CallStatus | str) -> CallEvent:
    """Map an administratively requested status onto the event that reaches it.

    Raises:
        InvalidTransitionError: If the target can never be requested (PENDING)
    """
    target = CallStatus(target)
    mapping = {
        CallStatus.IN_PROGRESS: CallEvent.PROGRESS,
        CallStatus.COMPLETED: CallEvent.COMPLETE,
        CallStatus.FAILED: CallEvent.FAIL,
        CallStatus.CANCELLED: CallEvent.CANCEL,
    }
    if target not in mapping:
        raise InvalidTransitionError(
            f"Status {target.value} cannot be set manually",
            details={"target": target.value},
        )
    return mapping[target]
