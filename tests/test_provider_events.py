"""Tests for webhook envelope parsing and event normalization."""

from __future__ import annotations

import pytest

from rx_caller.core.exceptions import WebhookPayloadError
from rx_caller.services.provider_events import (
    EndedEvent,
    FunctionCallEvent,
    ProgressEvent,
    TranscriptEvent,
    UnknownEvent,
    normalize_event,
    parse_bool,
    parse_duration,
    parse_envelope,
)


class TestParseEnvelope:
    """Tests for parse_envelope()."""

    def test_rejects_non_object(self):
        with pytest.raises(WebhookPayloadError):
            parse_envelope(["call-started"])

    def test_rejects_missing_event(self):
        with pytest.raises(WebhookPayloadError) as exc_info:
            parse_envelope({"data": {}})

        assert exc_info.value.status_code == 400

    def test_rejects_empty_event(self):
        with pytest.raises(WebhookPayloadError):
            parse_envelope({"event": "", "data": {}})

    def test_rejects_non_object_data(self):
        with pytest.raises(WebhookPayloadError):
            parse_envelope({"event": "call-started", "data": "oops"})

    def test_missing_data_is_empty(self):
        event = parse_envelope({"event": "call-started"})

        assert isinstance(event, ProgressEvent)
        assert event.provider_call_id is None
        assert event.raw == {}


class TestNormalizeEvent:
    """Tests for provider field-name variants."""

    @pytest.mark.parametrize("name", ["call-started", "queued", "ringing", "answered"])
    def test_progress_events(self, name):
        event = normalize_event(name, {"callId": "c-1"})

        assert isinstance(event, ProgressEvent)
        assert event.kind == "progress"
        assert event.provider_call_id == "c-1"
        assert event.provider_status == name

    @pytest.mark.parametrize(
        "data",
        [
            {"callId": "c-1"},
            {"id": "c-1"},
            {"vapiCallId": "c-1"},
            {"providerCallId": "c-1"},
            {"call": {"id": "c-1"}},
        ],
    )
    def test_provider_call_id_variants(self, data):
        assert normalize_event("call-started", data).provider_call_id == "c-1"

    def test_phone_and_patient_variants(self):
        event = normalize_event(
            "ringing",
            {"customer": {"number": "+4915112345678"}, "metadata": {"patientId": "p-1"}},
        )

        assert event.phone_number == "+4915112345678"
        assert event.patient_id == "p-1"

        event = normalize_event("ringing", {"to": "+4915100000000", "patientId": "p-2"})
        assert event.phone_number == "+4915100000000"
        assert event.patient_id == "p-2"

    def test_call_ended_fields(self):
        event = normalize_event(
            "call-ended",
            {
                "id": "c-1",
                "assistantSummary": "Delivery confirmed for Friday",
                "fullTranscript": "Hello ...",
                "durationSeconds": "95",
                "endedReason": "customer-ended-call",
                "successEvaluation": "true",
                "endedBy": "customer",
            },
        )

        assert isinstance(event, EndedEvent)
        assert event.summary == "Delivery confirmed for Friday"
        assert event.transcript == "Hello ..."
        assert event.duration == 95.0
        assert event.reason == "customer-ended-call"
        assert event.hangup_by == "customer"
        assert event.success is True
        assert not event.is_failure

    def test_nested_result_fields(self):
        event = normalize_event(
            "call-ended",
            {"result": {"summary": "Nobody answered", "success": False}},
        )

        assert event.summary == "Nobody answered"
        assert event.success is False
        assert event.is_failure

    def test_success_evaluation_wins_over_success(self):
        event = normalize_event("call-ended", {"successEvaluation": False, "success": True})

        assert event.success is False

    @pytest.mark.parametrize(
        "data",
        [
            {"status": "failed"},
            {"endedReason": "call-cancelled"},
            {"error": "SIP 486 busy"},
            {"success": "fail"},
        ],
    )
    def test_failure_classification(self, data):
        assert normalize_event("call-ended", data).is_failure

    def test_plain_end_is_success(self):
        assert not normalize_event("call-ended", {"summary": "ok"}).is_failure

    def test_transcript(self):
        event = normalize_event("transcript", {"callId": "c-1", "text": "Hi", "role": "assistant"})

        assert isinstance(event, TranscriptEvent)
        assert event.transcript == "Hi"
        assert event.speaker == "assistant"

    def test_function_call_nested(self):
        event = normalize_event(
            "function-call",
            {
                "callId": "c-1",
                "functionCall": {
                    "name": "confirmDelivery",
                    "parameters": {"confirmed": True, "deliveryTime": "Friday 10:00"},
                },
            },
        )

        assert isinstance(event, FunctionCallEvent)
        assert event.function_name == "confirmDelivery"
        assert event.parameters["deliveryTime"] == "Friday 10:00"

    def test_function_call_without_parameters(self):
        event = normalize_event("function-call", {"functionName": "updateMedication"})

        assert event.function_name == "updateMedication"
        assert event.parameters == {}

    def test_unknown_event(self):
        event = normalize_event("speech-update", {"callId": "c-1"})

        assert isinstance(event, UnknownEvent)
        assert event.kind == "unknown"
        assert event.provider_call_id == "c-1"


class TestScalarParsing:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (True, True),
            (False, False),
            ("false", False),
            ("FAILED", False),
            ("pass", True),
            ("maybe", None),
            (None, None),
            (0, False),
        ],
    )
    def test_parse_bool(self, value, expected):
        assert parse_bool(value) is expected

    @pytest.mark.parametrize(
        "value,expected",
        [(42, 42.0), ("12.5", 12.5), ("abc", None), (None, None), (True, None)],
    )
    def test_parse_duration(self, value, expected):
        assert parse_duration(value) == expected
