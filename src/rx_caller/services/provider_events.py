"""Voice provider webhook events.

Inbound envelopes ``{"event": str, "data": {...}}`` are normalized at the
boundary into one of a small set of pydantic models, discriminated by
``kind``. Everything downstream works with these models and never looks
at provider field-name variants.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from rx_caller.core.exceptions import WebhookPayloadError


PROGRESS_EVENTS = frozenset({"call-started", "queued", "ringing", "answered"})

_FALSE_STRINGS = frozenset({"false", "fail", "failed", "failure", "no", "0"})
_TRUE_STRINGS = frozenset({"true", "pass", "passed", "success", "yes", "1"})


# =============================================================================
# Event Models
# =============================================================================


class ProviderEventBase(BaseModel):
    """Fields shared by every normalized event."""

    model_config = ConfigDict(frozen=True)

    event: str
    provider_call_id: str | None = None
    phone_number: str | None = None
    patient_id: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)


class ProgressEvent(ProviderEventBase):
    """call-started, queued, ringing or answered."""

    kind: Literal["progress"] = "progress"
    provider_status: str | None = None


class EndedEvent(ProviderEventBase):
    """call-ended with the provider's outcome report."""

    kind: Literal["ended"] = "ended"
    summary: str | None = None
    transcript: Any = None
    duration: float | None = None
    status: str | None = None
    success: bool | None = None
    reason: str | None = None
    error: Any = None
    hangup_by: str | None = None

    @property
    def is_failure(self) -> bool:
        """Tolerant failure classification of a provider report."""
        if self.success is False:
            return True
        status_text = str(self.status or self.reason or "").lower()
        if "fail" in status_text or "cancel" in status_text:
            return True
        return bool(self.error)


class TranscriptEvent(ProviderEventBase):
    """Incremental transcript fragment."""

    kind: Literal["transcript"] = "transcript"
    transcript: Any = None
    speaker: str | None = None


class FunctionCallEvent(ProviderEventBase):
    """Assistant tool invocation such as confirmDelivery."""

    kind: Literal["function-call"] = "function-call"
    function_name: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class UnknownEvent(ProviderEventBase):
    """Any event name we do not handle."""

    kind: Literal["unknown"] = "unknown"


ProviderEvent = Annotated[
    Union[ProgressEvent, EndedEvent, TranscriptEvent, FunctionCallEvent, UnknownEvent],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[ProviderEvent] = TypeAdapter(ProviderEvent)


# =============================================================================
# Field Normalization
# =============================================================================


def _lookup(data: dict[str, Any], path: str) -> Any:
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def first_present(data: dict[str, Any], *paths: str) -> Any:
    """First truthy value among dotted ``paths``."""
    for path in paths:
        value = _lookup(data, path)
        if value not in (None, "", [], {}):
            return value
    return None


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def parse_bool(value: Any) -> bool | None:
    """Interpret provider success flags, which arrive as bools or strings."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _FALSE_STRINGS:
        return False
    if text in _TRUE_STRINGS:
        return True
    return None


def parse_duration(value: Any) -> float | None:
    """Duration in seconds, or None when absent or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if seconds != seconds:  # NaN
        return None
    return seconds


def _success_flag(data: dict[str, Any]) -> bool | None:
    # successEvaluation wins whenever the provider sent it
    for path in ("successEvaluation", "success", "result.success"):
        value = _lookup(data, path)
        if value is not None:
            return parse_bool(value)
    return None


def _common_fields(event: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "event": event,
        "provider_call_id": _as_str(
            first_present(data, "callId", "id", "vapiCallId", "providerCallId", "call.id")
        ),
        "phone_number": _as_str(first_present(data, "phoneNumber", "customer.number", "to")),
        "patient_id": _as_str(first_present(data, "metadata.patientId", "patientId")),
        "raw": data,
    }


def normalize_event(event: str, data: dict[str, Any]) -> ProviderEvent:
    """Build the normalized event model for a raw event name and data object."""
    fields = _common_fields(event, data)

    if event in PROGRESS_EVENTS:
        fields.update(
            kind="progress",
            provider_status=_as_str(first_present(data, "status", "state")) or event,
        )
    elif event == "call-ended":
        fields.update(
            kind="ended",
            summary=_as_str(
                first_present(
                    data, "summary", "assistantSummary", "result.summary", "output.summary"
                )
            ),
            transcript=first_present(data, "transcript", "fullTranscript", "result.transcript"),
            duration=parse_duration(
                first_present(data, "duration", "durationSeconds", "callDurationSeconds")
            ),
            status=_as_str(first_present(data, "status", "state")),
            success=_success_flag(data),
            reason=_as_str(first_present(data, "reason", "endedReason", "endReason")),
            error=first_present(data, "error", "errorMessage"),
            hangup_by=_as_str(first_present(data, "hangupBy", "endedBy")),
        )
    elif event == "transcript":
        fields.update(
            kind="transcript",
            transcript=first_present(data, "transcript", "text"),
            speaker=_as_str(first_present(data, "speaker", "role")),
        )
    elif event == "function-call":
        parameters = first_present(data, "parameters", "functionCall.parameters")
        fields.update(
            kind="function-call",
            function_name=_as_str(
                first_present(data, "functionName", "functionCall.name", "name")
            ),
            parameters=parameters if isinstance(parameters, dict) else {},
        )
    else:
        fields["kind"] = "unknown"

    return _event_adapter.validate_python(fields)


def parse_envelope(payload: Any) -> ProviderEvent:
    """Parse a decoded webhook body.

    Raises:
        WebhookPayloadError: Body is not an object or has no event name
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")

    event = payload.get("event")
    if not isinstance(event, str) or not event:
        raise WebhookPayloadError("Webhook body is missing 'event'")

    data = payload.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise WebhookPayloadError(
            "Webhook 'data' must be an object",
            details={"event": event},
        )

    return normalize_event(event, data)
