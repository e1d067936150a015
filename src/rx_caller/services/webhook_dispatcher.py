"""Webhook Event Dispatcher.

Correlates normalized provider events with stored calls and routes them to
the call lifecycle. Correlation misses and unknown events are logged and
dropped; they are not errors from the provider's point of view.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rx_caller.core.logging import get_logger
from rx_caller.db.models.core import CallModel
from rx_caller.services.call_lifecycle import CallLifecycleService
from rx_caller.services.provider_events import (
    EndedEvent,
    FunctionCallEvent,
    ProgressEvent,
    ProviderEvent,
    TranscriptEvent,
    UnknownEvent,
)

log = get_logger(__name__)


@dataclass
class DispatchOutcome:
    """Result of routing one webhook event."""

    event: str
    kind: str
    call_id: str | None = None
    action: str = "ignored"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "kind": self.kind,
            "call_id": self.call_id,
            "action": self.action,
        }


class WebhookDispatcher:
    """Routes provider events to :class:`CallLifecycleService`."""

    def __init__(self, lifecycle: CallLifecycleService) -> None:
        self.lifecycle = lifecycle
        self.calls = lifecycle.calls

    async def find_call(self, event: ProviderEvent) -> CallModel | None:
        """Locate the call an event refers to.

        Lookup order: provider call id, latest open call of the patient in
        the event metadata, latest open call for the dialled number. A
        fallback match without a stored provider id gets the event's id
        bound to it.
        """
        if event.provider_call_id:
            call = await self.calls.find_by_provider_id(event.provider_call_id)
            if call is not None:
                return call

        call = None
        if event.patient_id:
            try:
                call = await self.calls.find_latest_open_for_patient(event.patient_id)
            except ValueError:
                log.warning("Webhook patient id is not a UUID", patient_id=event.patient_id)
        if call is None and event.phone_number:
            call = await self.calls.find_latest_open_for_phone(event.phone_number)

        if call is None or not event.provider_call_id:
            return call

        if call.provider_call_id is None:
            await self.calls.bind_provider_id(call, event.provider_call_id)
            return call

        # Fallback hit a call that belongs to a different provider call
        log.warning(
            "Fallback match has a different provider call id",
            call_id=str(call.id),
            stored_provider_call_id=call.provider_call_id,
            provider_call_id=event.provider_call_id,
        )
        return None

    async def dispatch(self, event: ProviderEvent) -> DispatchOutcome:
        """Route one normalized event.

        Returns:
            DispatchOutcome naming the matched call and the action taken
        """
        outcome = DispatchOutcome(event=event.event, kind=event.kind)

        if isinstance(event, UnknownEvent):
            log.info("Unhandled webhook event", event_type=event.event)
            outcome.action = "unhandled"
            return outcome

        call = await self.find_call(event)
        if call is None:
            log.info(
                "Webhook event matched no call",
                event_type=event.event,
                provider_call_id=event.provider_call_id,
                patient_id=event.patient_id,
            )
            outcome.action = "no_match"
            return outcome

        outcome.call_id = str(call.id)

        if isinstance(event, ProgressEvent):
            outcome.action = await self.lifecycle.mark_in_progress(call, event)
        elif isinstance(event, EndedEvent):
            outcome.action = await self.lifecycle.complete_from_provider(call, event)
        elif isinstance(event, TranscriptEvent):
            await self.lifecycle.record_transcript(call, event)
            outcome.action = "transcript_logged"
        elif isinstance(event, FunctionCallEvent):
            await self.lifecycle.record_function_call(call, event)
            outcome.action = "function_call_logged"

        log.info(
            "Webhook event processed",
            event_type=event.event,
            call_id=outcome.call_id,
            action=outcome.action,
        )
        return outcome
