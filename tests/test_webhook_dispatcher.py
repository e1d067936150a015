"""Tests for correlating provider events with calls."""

from __future__ import annotations

import pytest

from rx_caller.core.state_machine import CallStatus
from rx_caller.services.provider_events import normalize_event
from rx_caller.services.webhook_dispatcher import WebhookDispatcher


@pytest.fixture
def dispatcher(lifecycle):
    return WebhookDispatcher(lifecycle)


class TestFindCall:
    """Tests for the correlation lookup order."""

    @pytest.mark.asyncio
    async def test_match_by_provider_call_id(self, dispatcher, lifecycle, sample_patient):
        call = await lifecycle.create_and_dispatch(sample_patient.id)

        found = await dispatcher.find_call(
            normalize_event("call-started", {"callId": call.provider_call_id})
        )

        assert found is not None
        assert found.id == call.id

    @pytest.mark.asyncio
    async def test_fallback_by_patient_binds_provider_id(
        self, dispatcher, lifecycle, sample_patient
    ):
        call = await lifecycle.create_call(sample_patient.id)

        found = await dispatcher.find_call(
            normalize_event(
                "call-started",
                {"callId": "prov-1", "metadata": {"patientId": str(sample_patient.id)}},
            )
        )

        assert found.id == call.id
        assert found.provider_call_id == "prov-1"
        assert (await lifecycle.calls.find_by_provider_id("prov-1")).id == call.id

    @pytest.mark.asyncio
    async def test_fallback_by_phone(self, dispatcher, lifecycle, sample_patient):
        call = await lifecycle.create_call(sample_patient.id)

        found = await dispatcher.find_call(
            normalize_event("ringing", {"customer": {"number": sample_patient.phone}})
        )

        assert found.id == call.id
        assert found.provider_call_id is None

    @pytest.mark.asyncio
    async def test_fallback_prefers_latest_open_call(
        self, dispatcher, lifecycle, sample_patient, clock
    ):
        older = await lifecycle.create_call(sample_patient.id)
        clock.advance(minutes=1)
        newer = await lifecycle.create_call(sample_patient.id)

        found = await dispatcher.find_call(
            normalize_event("call-started", {"patientId": str(sample_patient.id)})
        )

        assert found.id == newer.id
        assert found.id != older.id

    @pytest.mark.asyncio
    async def test_fallback_rejects_call_with_other_provider_id(
        self, dispatcher, lifecycle, sample_patient
    ):
        await lifecycle.create_and_dispatch(sample_patient.id)

        found = await dispatcher.find_call(
            normalize_event(
                "call-started",
                {"callId": "someone-else", "patientId": str(sample_patient.id)},
            )
        )

        assert found is None

    @pytest.mark.asyncio
    async def test_terminal_calls_are_not_fallback_candidates(
        self, dispatcher, lifecycle, sample_patient
    ):
        call = await lifecycle.create_call(sample_patient.id)
        await lifecycle.cancel(call.id)

        found = await dispatcher.find_call(
            normalize_event("call-started", {"patientId": str(sample_patient.id)})
        )

        assert found is None

    @pytest.mark.asyncio
    async def test_malformed_patient_id(self, dispatcher, lifecycle, sample_patient):
        await lifecycle.create_call(sample_patient.id)

        found = await dispatcher.find_call(
            normalize_event("call-started", {"patientId": "not-a-uuid"})
        )

        assert found is None


class TestDispatch:
    """Tests for routing events to the lifecycle."""

    @pytest.mark.asyncio
    async def test_started_then_ended(self, dispatcher, lifecycle, sample_patient):
        call = await lifecycle.create_and_dispatch(sample_patient.id)
        pid = call.provider_call_id

        started = await dispatcher.dispatch(normalize_event("call-started", {"callId": pid}))
        assert started.action == "started"
        assert started.call_id == str(call.id)

        ended = await dispatcher.dispatch(
            normalize_event("call-ended", {"callId": pid, "summary": "Delivery on Friday"})
        )
        assert ended.action == "completed"

        duplicate = await dispatcher.dispatch(
            normalize_event("call-ended", {"callId": pid, "summary": "again"})
        )
        assert duplicate.action == "duplicate"

        await lifecycle.calls.refresh(call)
        assert call.status == CallStatus.COMPLETED.value
        assert call.summary == "Delivery on Friday"

    @pytest.mark.asyncio
    async def test_function_call_and_transcript(self, dispatcher, lifecycle, sample_patient):
        call = await lifecycle.create_and_dispatch(sample_patient.id)
        pid = call.provider_call_id

        outcome = await dispatcher.dispatch(
            normalize_event(
                "function-call",
                {"callId": pid, "functionName": "confirmDelivery", "parameters": {"confirmed": True}},
            )
        )
        assert outcome.action == "function_call_logged"

        outcome = await dispatcher.dispatch(
            normalize_event("transcript", {"callId": pid, "transcript": "Ja, passt."})
        )
        assert outcome.action == "transcript_logged"

    @pytest.mark.asyncio
    async def test_unknown_event(self, dispatcher):
        outcome = await dispatcher.dispatch(normalize_event("hang", {"callId": "x"}))

        assert outcome.action == "unhandled"
        assert outcome.kind == "unknown"
        assert outcome.call_id is None

    @pytest.mark.asyncio
    async def test_no_match(self, dispatcher):
        outcome = await dispatcher.dispatch(normalize_event("call-ended", {"callId": "nobody"}))

        assert outcome.action == "no_match"
        assert outcome.to_dict() == {
            "event": "call-ended",
            "kind": "ended",
            "call_id": None,
            "action": "no_match",
        }
