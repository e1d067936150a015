"""Tests for the mock dispatch gateway and its simulated provider events."""

from __future__ import annotations

import json

import httpx
import pytest

from rx_caller.api.webhook_security import HMACSignatureValidator
from rx_caller.core.state_machine import CallStatus
from rx_caller.integrations.voice.base import MockDispatchGateway
from rx_caller.services.provider_events import EndedEvent, parse_envelope
from rx_caller.services.webhook_dispatcher import WebhookDispatcher

WEBHOOK_URL = "http://127.0.0.1:3001/api/v1/voice/webhook"
SECRET = "mock-secret"


def _recording_gateway(status_code: int = 200, **kwargs):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json={"success": status_code < 400})

    gateway = MockDispatchGateway(
        simulate_after=0,
        webhook_url=WEBHOOK_URL,
        webhook_secret=SECRET,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )
    return gateway, requests


class TestMockDispatchGateway:
    """Tests for request recording."""

    @pytest.mark.asyncio
    async def test_recording_is_bounded(self):
        gateway = MockDispatchGateway(max_recorded=2)

        for number in ("+491", "+492", "+493"):
            await gateway.initiate_call(number, "patient-1")

        assert [c["destination_number"] for c in gateway.get_calls()] == ["+492", "+493"]

    @pytest.mark.asyncio
    async def test_no_simulation_without_webhook_url(self):
        gateway = MockDispatchGateway(simulate_after=0)

        await gateway.initiate_call("+4915112345678", "patient-1")

        assert gateway.simulates_events is False
        await gateway.wait_for_simulations()
        await gateway.close()


class TestSimulatedEvents:
    """Tests for the provider simulation in development mode."""

    @pytest.mark.asyncio
    async def test_posts_signed_events_in_order(self):
        gateway, requests = _recording_gateway()

        result = await gateway.initiate_call("+4915112345678", "patient-1", "Erika")
        await gateway.wait_for_simulations()
        await gateway.close()

        bodies = [json.loads(r.content) for r in requests]
        assert [b["event"] for b in bodies] == [
            "call-started",
            "transcript",
            "transcript",
            "call-ended",
        ]
        assert all(str(r.url) == WEBHOOK_URL for r in requests)

        validator = HMACSignatureValidator(SECRET)
        assert all(validator.validate(r.headers["X-Vapi-Signature"], r.content) for r in requests)

        ended = parse_envelope(bodies[-1])
        assert isinstance(ended, EndedEvent)
        assert ended.provider_call_id == result.provider_call_id
        assert ended.patient_id == "patient-1"
        assert ended.is_failure is False
        assert ended.duration == 10

    @pytest.mark.asyncio
    async def test_stops_after_rejected_delivery(self):
        gateway, requests = _recording_gateway(status_code=401)

        await gateway.initiate_call("+4915112345678", "patient-1")
        await gateway.wait_for_simulations()
        await gateway.close()

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_close_cancels_pending_simulation(self):
        gateway, requests = _recording_gateway()
        gateway.simulate_after = 60

        await gateway.initiate_call("+4915112345678", "patient-1")
        await gateway.close()

        assert requests == []

    @pytest.mark.asyncio
    async def test_simulated_events_complete_the_call(self, lifecycle, sample_patient):
        dispatcher = WebhookDispatcher(lifecycle)
        call = await lifecycle.create_and_dispatch(sample_patient.id)

        events = MockDispatchGateway().simulated_events(
            call.provider_call_id, sample_patient.phone, str(sample_patient.id), sample_patient.name
        )
        actions = [(await dispatcher.dispatch(parse_envelope(event))).action for event in events]

        assert actions == ["started", "transcript_logged", "transcript_logged", "completed"]
        assert call.status == CallStatus.COMPLETED.value
        assert call.summary.startswith(f"Identity verified for {sample_patient.name}")
