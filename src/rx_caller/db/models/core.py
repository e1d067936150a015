"""Core ORM Models for rx-caller.

Patients are read-only reference data. Calls and their append-only
logs are owned by the call lifecycle service.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column

from rx_caller.core.clock import utcnow
from rx_caller.db.base import Base, TimestampMixin, UUIDMixin, UUIDType, isoformat


class PatientModel(Base, UUIDMixin, TimestampMixin):
    """Pharmacy patient reachable by phone."""

    __tablename__ = "patients"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
        comment="Destination number in E.164",
    )
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Opaque blobs passed through to the voice assistant
    medication_context: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
    )
    call_preferences: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment='May contain allowed_hours: {"start": 9, "end": 18}',
    )

    @property
    def allowed_hours(self) -> tuple[int, int] | None:
        """Allowed contact window as (start_hour, end_hour), if configured.

        Returns None when the window is missing or its hours are not in 0..23.
        """
        prefs = self.call_preferences or {}
        hours = prefs.get("allowed_hours")
        if not isinstance(hours, dict):
            return None
        try:
            start = int(hours.get("start", 9))
            end = int(hours.get("end", 18))
        except (TypeError, ValueError):
            return None
        if not (0 <= start <= 23 and 0 <= end <= 23):
            return None
        return start, end

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "medication_context": self.medication_context or {},
            "call_preferences": self.call_preferences or {},
        }


class CallModel(Base, UUIDMixin, TimestampMixin):
    """Outbound call record ORM model.

    Status is only changed through conditional updates issued by
    CallRepository.transition_status; a terminal row is never mutated
    again apart from log appends.
    """

    __tablename__ = "calls"

    patient_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("patients.id"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="PENDING, IN_PROGRESS, COMPLETED, FAILED, CANCELLED",
    )

    # Correlation key assigned by the voice provider
    provider_call_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
    )

    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    structured_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Transcript, duration, reason and errors reported at the end of the call",
    )

    # Set exactly once on entering a terminal status
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)

    # Back-reference to the campaign that produced this call
    scheduled_call_id: Mapped[UUID | None] = mapped_column(
        UUIDType(),
        ForeignKey("scheduled_calls.id"),
        nullable=True,
        index=True,
    )

    __table_args__ = (
        Index("ix_calls_patient_status", "patient_id", "status"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary for API responses."""
        return {
            "id": str(self.id),
            "patient_id": str(self.patient_id),
            "status": self.status,
            "provider_call_id": self.provider_call_id,
            "summary": self.summary,
            "structured_data": self.structured_data or {},
            "created_at": isoformat(self.created_at),
            "completed_at": isoformat(self.completed_at),
            "scheduled_call_id": str(self.scheduled_call_id) if self.scheduled_call_id else None,
        }


class CallLogModel(Base):
    """Append-only audit entry for a call."""

    __tablename__ = "call_logs"

    # Integer key preserves insertion order
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    call_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("calls.id"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(),
        default=utcnow,
        nullable=False,
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "call_id": str(self.call_id),
            "event_type": self.event_type,
            "data": self.data or {},
            "timestamp": isoformat(self.timestamp),
        }
