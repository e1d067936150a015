"""Tests for database repositories."""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from rx_caller.core.exceptions import CallNotFoundError
from rx_caller.core.state_machine import AttemptOutcome, CallStatus, ScheduleStatus
from rx_caller.db.models.core import CallModel
from rx_caller.db.models.scheduling import CallAttemptModel, ScheduledCallModel
from rx_caller.db.repositories.schedules import CallAttemptRepository


NOW = datetime(2026, 3, 2, 10, 0)


async def _call(call_repository, patient, **fields) -> CallModel:
    values = {"patient_id": patient.id, "status": CallStatus.PENDING.value, "created_at": NOW}
    values.update(fields)
    return await call_repository.create(CallModel(**values))


async def _schedule(schedule_repository, patient, **fields) -> ScheduledCallModel:
    values = {
        "patient_id": patient.id,
        "start_at": NOW,
        "next_attempt_at": NOW,
        "status": ScheduleStatus.SCHEDULED.value,
    }
    values.update(fields)
    return await schedule_repository.create(ScheduledCallModel(**values))


# ============================================================================
# Patient Repository Tests
# ============================================================================


class TestPatientRepository:
    """Tests for PatientRepository."""

    @pytest.mark.asyncio
    async def test_find_by_phone(self, patient_repository, sample_patient):
        patient = await patient_repository.find_by_phone(sample_patient.phone)

        assert patient is not None
        assert patient.id == sample_patient.id
        assert patient.allowed_hours is None

    @pytest.mark.asyncio
    async def test_allowed_hours(self, patient_repository, office_hours_patient):
        patient = await patient_repository.get(office_hours_patient.id)

        assert patient.allowed_hours == (9, 18)

    @pytest.mark.asyncio
    async def test_get_with_malformed_id(self, patient_repository):
        assert await patient_repository.get("not-a-uuid") is None


# ============================================================================
# Call Repository Tests
# ============================================================================


class TestCallRepository:
    """Tests for CallRepository."""

    @pytest.mark.asyncio
    async def test_get_or_raise(self, call_repository):
        with pytest.raises(CallNotFoundError) as exc_info:
            await call_repository.get_or_raise(uuid4())

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_transition_status_is_conditional(self, call_repository, sample_patient):
        call = await _call(call_repository, sample_patient)

        assert await call_repository.transition_status(
            call, CallStatus.PENDING, {"status": CallStatus.IN_PROGRESS}
        )
        assert call.status == CallStatus.IN_PROGRESS.value

        # Second writer still believes the call is PENDING
        assert not await call_repository.transition_status(
            call, CallStatus.PENDING, {"status": CallStatus.CANCELLED}
        )
        assert call.status == CallStatus.IN_PROGRESS.value

    @pytest.mark.asyncio
    async def test_bind_provider_id_once(self, call_repository, sample_patient):
        first = await _call(call_repository, sample_patient)
        second = await _call(call_repository, sample_patient)

        assert await call_repository.bind_provider_id(first, "prov-1")
        assert first.provider_call_id == "prov-1"

        # Already owned by another call
        assert not await call_repository.bind_provider_id(second, "prov-1")
        assert second.provider_call_id is None

        # Never overwritten
        assert not await call_repository.bind_provider_id(first, "prov-2")
        assert first.provider_call_id == "prov-1"

    @pytest.mark.asyncio
    async def test_latest_open_for_patient_and_phone(self, call_repository, sample_patient):
        await _call(call_repository, sample_patient, created_at=NOW)
        newest = await _call(call_repository, sample_patient, created_at=NOW + timedelta(minutes=5))
        await _call(
            call_repository,
            sample_patient,
            status=CallStatus.COMPLETED.value,
            created_at=NOW + timedelta(minutes=10),
        )

        by_patient = await call_repository.find_latest_open_for_patient(sample_patient.id)
        by_phone = await call_repository.find_latest_open_for_phone(sample_patient.phone)

        assert by_patient.id == newest.id
        assert by_phone.id == newest.id

    @pytest.mark.asyncio
    async def test_logs_in_insertion_order(self, call_repository, sample_patient):
        call = await _call(call_repository, sample_patient)

        for event_type in ("CALL_INITIATED", "PROVIDER_DISPATCHED", "CALL_STARTED"):
            await call_repository.append_log(call.id, event_type, {"n": event_type}, NOW)

        logs = await call_repository.get_logs(call.id)

        assert [entry.event_type for entry in logs] == [
            "CALL_INITIATED",
            "PROVIDER_DISPATCHED",
            "CALL_STARTED",
        ]
        assert logs[0].to_dict()["call_id"] == str(call.id)

    @pytest.mark.asyncio
    async def test_list_and_count(self, call_repository, sample_patient):
        await _call(call_repository, sample_patient)
        await _call(call_repository, sample_patient, status=CallStatus.FAILED.value)

        assert await call_repository.count() == 2
        assert await call_repository.count(status=CallStatus.FAILED.value) == 1

        pending = await call_repository.list_calls(status=CallStatus.PENDING.value)
        assert len(pending) == 1


# ============================================================================
# Campaign Repository Tests
# ============================================================================


class TestScheduledCallRepository:
    """Tests for ScheduledCallRepository."""

    @pytest.mark.asyncio
    async def test_find_due_ids(self, schedule_repository, sample_patient):
        due = await _schedule(schedule_repository, sample_patient, next_attempt_at=NOW)
        await _schedule(
            schedule_repository, sample_patient, next_attempt_at=NOW + timedelta(minutes=1)
        )
        await _schedule(
            schedule_repository, sample_patient, status=ScheduleStatus.CANCELLED.value
        )
        await _schedule(schedule_repository, sample_patient, next_attempt_at=None)

        assert await schedule_repository.find_due_ids(NOW) == [due.id]

    @pytest.mark.asyncio
    async def test_find_due_ids_oldest_first(self, schedule_repository, sample_patient):
        later = await _schedule(schedule_repository, sample_patient, next_attempt_at=NOW)
        earlier = await _schedule(
            schedule_repository, sample_patient, next_attempt_at=NOW - timedelta(hours=1)
        )

        assert await schedule_repository.find_due_ids(NOW, limit=1) == [earlier.id]
        assert await schedule_repository.find_due_ids(NOW) == [earlier.id, later.id]

    @pytest.mark.asyncio
    async def test_update_if_active(self, schedule_repository, sample_patient):
        schedule = await _schedule(schedule_repository, sample_patient)

        assert await schedule_repository.update_if_active(
            schedule, {"attempts_made": 1, "status": ScheduleStatus.RUNNING}, attempts_made=0
        )
        assert schedule.status == ScheduleStatus.RUNNING.value

        # Stale attempt counter
        assert not await schedule_repository.update_if_active(
            schedule, {"attempts_made": 1}, attempts_made=0
        )

        assert await schedule_repository.update_if_active(
            schedule, {"status": ScheduleStatus.COMPLETED, "next_attempt_at": None}
        )
        # Terminal campaigns are never written again
        assert not await schedule_repository.update_if_active(
            schedule, {"status": ScheduleStatus.RUNNING}
        )
        assert schedule.status == ScheduleStatus.COMPLETED.value


class TestCallAttemptRepository:
    """Tests for CallAttemptRepository."""

    @pytest.mark.asyncio
    async def test_resolve_once(
        self, db_session, schedule_repository, call_repository, sample_patient
    ):
        attempts = CallAttemptRepository(db_session)
        schedule = await _schedule(schedule_repository, sample_patient)
        call = await _call(call_repository, sample_patient, scheduled_call_id=schedule.id)
        attempt = await attempts.create(
            CallAttemptModel(
                scheduled_call_id=schedule.id,
                attempt_number=1,
                call_id=call.id,
                outcome=AttemptOutcome.IN_PROGRESS.value,
            )
        )

        assert (await attempts.find_by_call_id(call.id)).id == attempt.id
        assert (await attempts.latest_for_schedule(schedule.id)).id == attempt.id

        assert await attempts.resolve(attempt, AttemptOutcome.ANSWERED, ended_at=NOW)
        assert attempt.outcome == AttemptOutcome.ANSWERED.value
        assert attempt.ended_at == NOW

        assert not await attempts.resolve(attempt, AttemptOutcome.FAILED, ended_at=NOW)
        assert attempt.outcome == AttemptOutcome.ANSWERED.value
