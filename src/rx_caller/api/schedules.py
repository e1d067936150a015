"""Retry campaign endpoints and scheduler status."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from rx_caller.core.state_machine import AttemptOutcome, ScheduleStatus
from rx_caller.db.models.scheduling import CallAttemptModel, ScheduledCallModel
from rx_caller.dependencies import CampaignServiceDep, SchedulerDep
from rx_caller.services.campaigns import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_INTERVAL_MINUTES,
    MAX_ATTEMPTS,
    MAX_RETRY_INTERVAL_MINUTES,
    MIN_ATTEMPTS,
    MIN_RETRY_INTERVAL_MINUTES,
)


router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================


class ScheduleCreate(BaseModel):
    """Schema for creating a retry campaign."""

    patient_id: UUID
    start_at: datetime = Field(..., description="First attempt time; naive values are UTC")
    retry_interval_minutes: int = Field(
        DEFAULT_RETRY_INTERVAL_MINUTES,
        ge=MIN_RETRY_INTERVAL_MINUTES,
        le=MAX_RETRY_INTERVAL_MINUTES,
    )
    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=MIN_ATTEMPTS, le=MAX_ATTEMPTS)
    voicemail_template: str | None = Field(None, max_length=2000)


class CallAttempt(BaseModel):
    """One attempt of a campaign."""

    attempt_number: int
    call_id: UUID
    outcome: AttemptOutcome
    created_at: datetime
    ended_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CallAttemptModel) -> "CallAttempt":
        return cls(
            attempt_number=model.attempt_number,
            call_id=model.call_id,
            outcome=AttemptOutcome(model.outcome),
            created_at=model.created_at,
            ended_at=model.ended_at,
        )


class Schedule(BaseModel):
    """Retry campaign schema for API responses."""

    id: UUID
    patient_id: UUID
    status: ScheduleStatus
    start_at: datetime
    retry_interval_minutes: int
    max_attempts: int
    attempts_made: int
    next_attempt_at: datetime | None = None
    voicemail_template: str | None = None
    created_at: datetime

    @classmethod
    def from_model(cls, model: ScheduledCallModel) -> "Schedule":
        """Create schema from ORM model."""
        return cls(
            id=model.id,
            patient_id=model.patient_id,
            status=ScheduleStatus(model.status),
            start_at=model.start_at,
            retry_interval_minutes=model.retry_interval_minutes,
            max_attempts=model.max_attempts,
            attempts_made=model.attempts_made,
            next_attempt_at=model.next_attempt_at,
            voicemail_template=model.voicemail_template,
            created_at=model.created_at,
        )


class ScheduleDetail(Schedule):
    """Campaign with its attempts."""

    attempts: list[CallAttempt] = Field(default_factory=list)


class ScheduleListResponse(BaseModel):
    """Paginated campaign list response."""

    schedules: list[Schedule]
    total: int
    page: int
    page_size: int


# ============================================================================
# Campaign Endpoints
# ============================================================================


@router.post("/schedules", response_model=Schedule, status_code=201)
async def create_schedule(body: ScheduleCreate, campaigns: CampaignServiceDep) -> Schedule:
    """Schedule a retry campaign for a patient."""
    schedule = await campaigns.create_schedule(
        body.patient_id,
        body.start_at,
        retry_interval_minutes=body.retry_interval_minutes,
        max_attempts=body.max_attempts,
        voicemail_template=body.voicemail_template,
    )
    return Schedule.from_model(schedule)


@router.get("/schedules", response_model=ScheduleListResponse)
async def list_schedules(
    campaigns: CampaignServiceDep,
    status: ScheduleStatus | None = None,
    patient_id: UUID | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> ScheduleListResponse:
    """List campaigns newest first."""
    status_value = status.value if status else None
    schedules = await campaigns.list(
        status=status_value,
        patient_id=patient_id,
        skip=(page - 1) * page_size,
        limit=page_size,
    )
    total = await campaigns.schedules.count(status=status_value, patient_id=patient_id)

    return ScheduleListResponse(
        schedules=[Schedule.from_model(s) for s in schedules],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/schedules/{scheduled_call_id}", response_model=ScheduleDetail)
async def get_schedule(scheduled_call_id: UUID, campaigns: CampaignServiceDep) -> ScheduleDetail:
    """Get a campaign with its attempts."""
    schedule = await campaigns.get(scheduled_call_id)
    attempts = await campaigns.list_attempts(schedule.id)
    return ScheduleDetail(
        **Schedule.from_model(schedule).model_dump(),
        attempts=[CallAttempt.from_model(a) for a in attempts],
    )


@router.post("/schedules/{scheduled_call_id}/cancel", response_model=Schedule)
async def cancel_schedule(scheduled_call_id: UUID, campaigns: CampaignServiceDep) -> Schedule:
    """Cancel a campaign that has not finished."""
    schedule = await campaigns.cancel(scheduled_call_id)
    return Schedule.from_model(schedule)


@router.get("/scheduler/status")
async def scheduler_status(scheduler: SchedulerDep) -> dict[str, Any]:
    """Background scheduler state and metrics."""
    return scheduler.get_status()
