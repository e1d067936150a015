"""Call management endpoints.

Ad hoc call creation, listing, detail with logs, and administrative
status overrides. All state changes go through CallLifecycleService.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from rx_caller.core.state_machine import CallStatus
from rx_caller.db.models.core import CallLogModel, CallModel
from rx_caller.dependencies import LifecycleDep


router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================


class CallCreate(BaseModel):
    """Schema for creating an ad hoc call."""

    patient_id: UUID


class CallStatusUpdate(BaseModel):
    """Schema for a manual status override."""

    status: CallStatus
    summary: str | None = Field(None, max_length=10000)
    structured_data: dict[str, Any] | None = None
    provider_call_id: str | None = Field(None, max_length=255)


class CallLog(BaseModel):
    """Call log entry."""

    id: int
    event_type: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    @classmethod
    def from_model(cls, model: CallLogModel) -> "CallLog":
        return cls(
            id=model.id,
            event_type=model.event_type,
            data=model.data or {},
            timestamp=model.timestamp,
        )


class Call(BaseModel):
    """Call record schema for API responses."""

    id: UUID
    patient_id: UUID
    status: CallStatus
    provider_call_id: str | None = None
    summary: str | None = None
    structured_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    completed_at: datetime | None = None
    scheduled_call_id: UUID | None = None

    @classmethod
    def from_model(cls, model: CallModel) -> "Call":
        """Create schema from ORM model."""
        return cls(
            id=model.id,
            patient_id=model.patient_id,
            status=CallStatus(model.status),
            provider_call_id=model.provider_call_id,
            summary=model.summary,
            structured_data=model.structured_data or {},
            created_at=model.created_at,
            completed_at=model.completed_at,
            scheduled_call_id=model.scheduled_call_id,
        )


class CallDetail(Call):
    """Call with its log entries."""

    logs: list[CallLog] = Field(default_factory=list)


class CallListResponse(BaseModel):
    """Paginated call list response."""

    calls: list[Call]
    total: int
    page: int
    page_size: int


# ============================================================================
# Call Endpoints
# ============================================================================


@router.post("/calls", response_model=Call, status_code=201)
async def create_call(body: CallCreate, lifecycle: LifecycleDep) -> Call:
    """Create a call for a patient and dispatch it immediately.

    A dispatch failure still returns the call, in FAILED status with the
    error in structured_data.
    """
    call = await lifecycle.create_and_dispatch(body.patient_id)
    return Call.from_model(call)


@router.get("/calls", response_model=CallListResponse)
async def list_calls(
    lifecycle: LifecycleDep,
    status: CallStatus | None = None,
    patient_id: UUID | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> CallListResponse:
    """List calls newest first with optional filtering and pagination."""
    skip = (page - 1) * page_size
    status_value = status.value if status else None

    calls = await lifecycle.calls.list_calls(
        status=status_value,
        patient_id=patient_id,
        skip=skip,
        limit=page_size,
    )
    total = await lifecycle.calls.count(status=status_value, patient_id=patient_id)

    return CallListResponse(
        calls=[Call.from_model(c) for c in calls],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/calls/{call_id}", response_model=CallDetail)
async def get_call(call_id: UUID, lifecycle: LifecycleDep) -> CallDetail:
    """Get a call with its full log."""
    call = await lifecycle.calls.get_or_raise(call_id)
    logs = await lifecycle.calls.get_logs(call.id)
    return CallDetail(
        **Call.from_model(call).model_dump(),
        logs=[CallLog.from_model(entry) for entry in logs],
    )


@router.patch("/calls/{call_id}/status", response_model=Call)
async def update_call_status(
    call_id: UUID,
    body: CallStatusUpdate,
    lifecycle: LifecycleDep,
) -> Call:
    """Manually override a call's status.

    The override follows the normal transition graph: terminal calls and
    unreachable targets are rejected with 409.
    """
    call = await lifecycle.update_status(
        call_id,
        body.status,
        summary=body.summary,
        structured_data=body.structured_data,
        provider_call_id=body.provider_call_id,
    )
    return Call.from_model(call)


@router.post("/calls/{call_id}/cancel", response_model=Call)
async def cancel_call(call_id: UUID, lifecycle: LifecycleDep) -> Call:
    """Cancel a call that has not started yet."""
    call = await lifecycle.cancel(call_id)
    return Call.from_model(call)
