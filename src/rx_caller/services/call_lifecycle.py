"""Call Lifecycle Service.

Owns every mutation of Call rows and their CallLog entries. Status changes
are computed by :func:`rx_caller.core.state_machine.transition` and written
with a conditional update on the status that was read, so a concurrent
writer turns the losing operation into a no-op instead of a lost update.

Terminal outcomes are reported to the campaign layer in the same
transaction through :meth:`CampaignService.record_attempt_outcome`.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic_core import to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rx_caller.core.clock import Clock, utcnow
from rx_caller.core.exceptions import (
    ConcurrentUpdateError,
    DispatchError,
    DispatchTimeoutError,
    InvalidTransitionError,
    LifecycleError,
    wrap_exception,
)
from rx_caller.core.logging import get_logger
from rx_caller.core.state_machine import (
    CallEvent,
    CallStatus,
    event_for_target,
    transition,
)
from rx_caller.db.models.core import CallModel
from rx_caller.db.repositories.calls import CallRepository
from rx_caller.db.repositories.patients import PatientRepository
from rx_caller.integrations.voice.base import DispatchGateway
from rx_caller.services.campaigns import CampaignService
from rx_caller.services.provider_events import (
    EndedEvent,
    FunctionCallEvent,
    ProgressEvent,
    TranscriptEvent,
)

log = get_logger(__name__)


class LogEvent(str, Enum):
    """CallLog event types."""

    CALL_INITIATED = "CALL_INITIATED"
    PROVIDER_DISPATCHED = "PROVIDER_DISPATCHED"
    DISPATCH_ERROR = "DISPATCH_ERROR"
    CALL_STARTED = "CALL_STARTED"
    CALL_PROGRESS = "CALL_PROGRESS"
    LATE_EVENT_IGNORED = "LATE_EVENT_IGNORED"
    CALL_ENDED = "CALL_ENDED"
    CALL_ENDED_DUPLICATE = "CALL_ENDED_DUPLICATE"
    TRANSCRIPT = "TRANSCRIPT"
    FUNCTION_CALL = "FUNCTION_CALL"
    DELIVERY_CONFIRMATION = "DELIVERY_CONFIRMATION"
    MEDICATION_UPDATE = "MEDICATION_UPDATE"
    STATUS_UPDATED = "STATUS_UPDATED"
    CALL_CANCELLED = "CALL_CANCELLED"
    LOG_WRITE_FAILED = "LOG_WRITE_FAILED"


DEFAULT_COMPLETED_SUMMARY = "Call completed"
DEFAULT_FAILED_SUMMARY = "Call failed"


class CallLifecycleService:
    """Drives calls through PENDING -> IN_PROGRESS -> terminal.

    Usage:
        service = CallLifecycleService(session, gateway)
        call = await service.create_and_dispatch(patient_id)
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: DispatchGateway | None = None,
        *,
        clock: Clock = utcnow,
        campaigns: CampaignService | None = None,
        dispatch_timeout: float = 15.0,
    ) -> None:
        """Initialize the service.

        Args:
            session: Database session; the caller owns the transaction
            gateway: Outbound dispatch gateway (only needed to dispatch)
            clock: Source of naive UTC "now"
            campaigns: Campaign service receiving terminal outcomes
            dispatch_timeout: Seconds to wait for the gateway
        """
        self.session = session
        self.gateway = gateway
        self.clock = clock
        self.dispatch_timeout = dispatch_timeout
        self.calls = CallRepository(session)
        self.patients = PatientRepository(session)
        self.campaigns = campaigns or CampaignService(session, clock=clock)

    # ========================================================================
    # Creation and Dispatch
    # ========================================================================

    async def create_call(
        self,
        patient_id: UUID | str,
        scheduled_call_id: UUID | str | None = None,
    ) -> CallModel:
        """Create a PENDING call for a patient.

        Raises:
            PatientNotFoundError: Unknown patient
        """
        patient = await self.patients.get_or_raise(patient_id)
        now = self.clock()

        call = CallModel(
            patient_id=patient.id,
            status=CallStatus.PENDING.value,
            scheduled_call_id=UUID(str(scheduled_call_id)) if scheduled_call_id else None,
            created_at=now,
            updated_at=now,
        )
        await self.calls.create(call)

        await self._append_log(
            call,
            LogEvent.CALL_INITIATED,
            {
                "patient_id": patient.id,
                "scheduled_call_id": call.scheduled_call_id,
            },
        )
        log.info(
            "Call created",
            call_id=str(call.id),
            patient_id=str(patient.id),
            scheduled_call_id=str(call.scheduled_call_id) if call.scheduled_call_id else None,
        )
        return call

    async def dispatch(self, call: CallModel) -> CallModel:
        """Hand a PENDING call to the voice provider.

        Gateway failures never propagate: the call is moved to FAILED with
        the error recorded, and the outcome is reported to its campaign.
        """
        if self.gateway is None:
            raise LifecycleError("No dispatch gateway configured")

        patient = await self.patients.get_or_raise(call.patient_id)

        try:
            result = await asyncio.wait_for(
                self.gateway.initiate_call(
                    destination_number=patient.phone,
                    patient_id=str(patient.id),
                    patient_name=patient.name,
                ),
                timeout=self.dispatch_timeout,
            )
        except asyncio.TimeoutError as e:
            error: DispatchError = DispatchTimeoutError(
                f"Dispatch timed out after {self.dispatch_timeout}s",
                cause=e,
            )
            await self._fail_dispatch(call, error)
            return call
        except DispatchError as e:
            await self._fail_dispatch(call, e)
            return call
        except Exception as e:
            log.exception("Unexpected dispatch gateway error", call_id=str(call.id))
            await self._fail_dispatch(call, wrap_exception(e, DispatchError))
            return call

        await self.calls.refresh(call)
        status = CallStatus(call.status)

        if result.provider_call_id and not status.is_terminal:
            bound = await self.calls.bind_provider_id(call, result.provider_call_id)
            if not bound:
                log.warning(
                    "Provider call id already bound elsewhere",
                    call_id=str(call.id),
                    provider_call_id=result.provider_call_id,
                )

        await self._append_log(
            call,
            LogEvent.PROVIDER_DISPATCHED,
            {
                "provider_call_id": result.provider_call_id,
                "provider": result.provider,
                "status": result.status,
            },
        )
        log.info(
            "Call dispatched",
            call_id=str(call.id),
            provider_call_id=result.provider_call_id,
        )
        return call

    async def create_and_dispatch(
        self,
        patient_id: UUID | str,
        scheduled_call_id: UUID | str | None = None,
    ) -> CallModel:
        """Create a call and dispatch it right away.

        The PENDING row is committed before the provider is contacted so a
        webhook that races the dispatch response can find it.
        """
        call = await self.create_call(patient_id, scheduled_call_id)
        await self.session.commit()
        return await self.dispatch(call)

    async def _fail_dispatch(self, call: CallModel, error: DispatchError) -> None:
        await self._append_log(
            call,
            LogEvent.DISPATCH_ERROR,
            {"error": error.message, "error_code": error.error_code},
        )
        log.warning(
            "Call dispatch failed",
            call_id=str(call.id),
            error=error.message,
            error_code=error.error_code,
        )

        await self.calls.refresh(call)
        current = CallStatus(call.status)
        try:
            transition(current, CallEvent.DISPATCH_FAILED)
        except InvalidTransitionError:
            # A webhook already moved the call on
            log.info(
                "Dispatch failure after call progressed",
                call_id=str(call.id),
                status=current.value,
            )
            return

        now = self.clock()
        updated = await self.calls.transition_status(
            call,
            current,
            {
                "status": CallStatus.FAILED,
                "completed_at": now,
                "structured_data": {"error": error.message},
            },
        )
        if not updated:
            return

        await self._append_log(
            call,
            LogEvent.CALL_ENDED,
            {"reason": "dispatch_failed", "error": error.message, "result": "failed"},
        )
        await self.campaigns.record_attempt_outcome(call)

    # ========================================================================
    # Provider Events
    # ========================================================================

    async def mark_in_progress(self, call: CallModel, event: ProgressEvent) -> str:
        """Apply call-started/queued/ringing/answered.

        Returns:
            "started", "progress" or "ignored"
        """
        current = CallStatus(call.status)
        details = {
            "provider_call_id": event.provider_call_id,
            "phone_number": event.phone_number,
            "event": event.event,
            "provider_status": event.provider_status,
        }

        if current.is_terminal:
            await self._append_log(
                call,
                LogEvent.LATE_EVENT_IGNORED,
                {**details, "status": current.value},
            )
            log.info("Late progress event ignored", call_id=str(call.id), event_type=event.event)
            return "ignored"

        if current == CallStatus.IN_PROGRESS:
            await self._append_log(call, LogEvent.CALL_PROGRESS, details)
            return "progress"

        transition(current, CallEvent.PROGRESS)
        updated = await self.calls.transition_status(
            call,
            current,
            {"status": CallStatus.IN_PROGRESS},
        )
        if not updated:
            # Status moved forward underneath us; re-apply against the new state
            return await self.mark_in_progress(call, event)

        await self._append_log(call, LogEvent.CALL_STARTED, details)
        log.info("Call started", call_id=str(call.id), provider_call_id=event.provider_call_id)
        return "started"

    async def complete_from_provider(self, call: CallModel, event: EndedEvent) -> str:
        """Apply call-ended.

        Works from PENDING as well as IN_PROGRESS. A call that is already
        terminal is left untouched apart from a duplicate log entry.

        Returns:
            "completed", "failed" or "duplicate"
        """
        current = CallStatus(call.status)
        if current.is_terminal:
            await self._log_duplicate_end(call, event)
            return "duplicate"

        failed = event.is_failure
        target = transition(current, CallEvent.FAIL if failed else CallEvent.COMPLETE)

        now = self.clock()
        if event.duration and event.duration > 0:
            completed_at = call.created_at + timedelta(seconds=event.duration)
        else:
            completed_at = now

        structured_data: dict[str, Any] = {
            "transcript": event.transcript,
            "duration": event.duration,
            "reason": event.reason,
            "completed_at": completed_at.isoformat(),
        }
        if failed:
            structured_data["error"] = event.error
            structured_data["hangup_by"] = event.hangup_by

        summary = event.summary or (DEFAULT_FAILED_SUMMARY if failed else DEFAULT_COMPLETED_SUMMARY)

        updated = await self.calls.transition_status(
            call,
            current,
            {
                "status": target,
                "summary": summary,
                "structured_data": to_jsonable_python(structured_data),
                "completed_at": completed_at,
            },
        )
        if not updated:
            if CallStatus(call.status).is_terminal:
                await self._log_duplicate_end(call, event)
                return "duplicate"
            return await self.complete_from_provider(call, event)

        result = "failed" if failed else "completed"
        await self._append_log(
            call,
            LogEvent.CALL_ENDED,
            {
                "provider_call_id": event.provider_call_id,
                "summary": event.summary,
                "transcript": event.transcript,
                "duration": event.duration,
                "reason": event.reason,
                "error": event.error,
                "hangup_by": event.hangup_by,
                "result": result,
            },
        )
        log.info(
            "Call ended",
            call_id=str(call.id),
            status=target.value,
            provider_call_id=event.provider_call_id,
        )

        await self.campaigns.record_attempt_outcome(call)
        return result

    async def _log_duplicate_end(self, call: CallModel, event: EndedEvent) -> None:
        await self._append_log(
            call,
            LogEvent.CALL_ENDED_DUPLICATE,
            {
                "provider_call_id": event.provider_call_id,
                "status": call.status,
                "reported_summary": event.summary,
                "reported_reason": event.reason,
            },
        )
        log.info("Duplicate call-ended ignored", call_id=str(call.id), status=call.status)

    async def record_transcript(self, call: CallModel, event: TranscriptEvent) -> None:
        """Append a transcript fragment to the call log."""
        await self._append_log(
            call,
            LogEvent.TRANSCRIPT,
            {
                "provider_call_id": event.provider_call_id,
                "transcript": event.transcript,
                "speaker": event.speaker,
                "timestamp": self.clock().isoformat(),
            },
        )

    async def record_function_call(self, call: CallModel, event: FunctionCallEvent) -> None:
        """Log an assistant tool call; delivery and medication tools get their own entry."""
        params = event.parameters
        await self._append_log(
            call,
            LogEvent.FUNCTION_CALL,
            {
                "provider_call_id": event.provider_call_id,
                "function_name": event.function_name,
                "parameters": params,
            },
        )

        if event.function_name == "confirmDelivery":
            await self._append_log(
                call,
                LogEvent.DELIVERY_CONFIRMATION,
                {
                    "confirmed": params.get("confirmed"),
                    "delivery_time": params.get("deliveryTime"),
                    "notes": params.get("notes"),
                },
            )
        elif event.function_name == "updateMedication":
            await self._append_log(
                call,
                LogEvent.MEDICATION_UPDATE,
                {
                    "medication_changes": params.get("medicationChanges"),
                    "patient_response": params.get("patientResponse"),
                },
            )
        else:
            log.info(
                "Unhandled function call",
                call_id=str(call.id),
                function_name=event.function_name,
            )

    # ========================================================================
    # Administrative Operations
    # ========================================================================

    async def update_status(
        self,
        call_id: UUID | str,
        status: CallStatus | str,
        *,
        summary: str | None = None,
        structured_data: dict[str, Any] | None = None,
        provider_call_id: str | None = None,
    ) -> CallModel:
        """Manually move a call to a new status.

        Follows the same transition graph as provider events.

        Raises:
            CallNotFoundError: Unknown call
            CallAlreadyTerminalError: Call is already terminal
            InvalidTransitionError: Target not reachable from the current status
            ConcurrentUpdateError: Another writer changed the call first
        """
        call = await self.calls.get_or_raise(call_id)
        current = CallStatus(call.status)
        target = transition(current, event_for_target(status))

        now = self.clock()
        values: dict[str, Any] = {"status": target}
        if summary is not None:
            values["summary"] = summary
        if structured_data is not None:
            values["structured_data"] = to_jsonable_python(structured_data)
        if target.is_terminal:
            values["completed_at"] = now

        if provider_call_id and provider_call_id != call.provider_call_id:
            owner = await self.calls.find_by_provider_id(provider_call_id)
            if owner is not None and owner.id != call.id:
                raise LifecycleError(
                    "Provider call id already belongs to another call",
                    details={"provider_call_id": provider_call_id, "call_id": str(owner.id)},
                )
            values["provider_call_id"] = provider_call_id

        updated = await self.calls.transition_status(call, current, values)
        if not updated:
            raise ConcurrentUpdateError(
                "Call status changed concurrently",
                details={"call_id": str(call.id), "expected_status": current.value},
            )

        await self._append_log(
            call,
            LogEvent.STATUS_UPDATED,
            {
                "old_status": current.value,
                "new_status": target.value,
                "summary": summary,
                "provider_call_id": provider_call_id,
                "forced": True,
            },
        )
        log.info(
            "Call status updated manually",
            call_id=str(call.id),
            old_status=current.value,
            new_status=target.value,
        )

        if target.is_terminal:
            await self.campaigns.record_attempt_outcome(call)
        return call

    async def cancel(self, call_id: UUID | str) -> CallModel:
        """Cancel a call that has not started yet.

        Raises:
            CallNotFoundError: Unknown call
            InvalidTransitionError: Call is no longer PENDING
        """
        call = await self.calls.get_or_raise(call_id)
        current = CallStatus(call.status)
        target = transition(current, CallEvent.CANCEL)

        updated = await self.calls.transition_status(
            call,
            current,
            {"status": target, "completed_at": self.clock()},
        )
        if not updated:
            raise ConcurrentUpdateError(
                "Call status changed concurrently",
                details={"call_id": str(call.id), "expected_status": current.value},
            )

        await self._append_log(call, LogEvent.CALL_CANCELLED, {"old_status": current.value})
        log.info("Call cancelled", call_id=str(call.id))

        await self.campaigns.record_attempt_outcome(call)
        return call

    # ========================================================================
    # Logging
    # ========================================================================

    async def _append_log(
        self,
        call: CallModel,
        event_type: LogEvent,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Append a CallLog entry inside a SAVEPOINT.

        A failed write is reported and replaced by a LOG_WRITE_FAILED entry;
        it never aborts the surrounding transition.
        """
        now = self.clock()
        try:
            async with self.session.begin_nested():
                await self.calls.append_log(
                    call.id, event_type.value, to_jsonable_python(data or {}), now
                )
            return
        except SQLAlchemyError as e:
            log.error(
                "Call log write failed",
                call_id=str(call.id),
                event_type=event_type.value,
                error=str(e),
            )
            failure = str(e)

        try:
            async with self.session.begin_nested():
                await self.calls.append_log(
                    call.id,
                    LogEvent.LOG_WRITE_FAILED.value,
                    {"event_type": event_type.value, "error": failure},
                    now,
                )
        except SQLAlchemyError as e:
            log.error(
                "Could not record log write failure",
                call_id=str(call.id),
                event_type=event_type.value,
                error=str(e),
            )
