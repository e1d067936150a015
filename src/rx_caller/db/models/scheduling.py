"""Retry campaign ORM models.

A ScheduledCall drives up to ``max_attempts`` CallAttempts, each linked
to exactly one Call. Both tables are owned by the campaign scheduler.
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
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rx_caller.db.base import Base, TimestampMixin, UUIDMixin, UUIDType, isoformat


class ScheduledCallModel(Base, UUIDMixin, TimestampMixin):
    """Retry campaign for one patient."""

    __tablename__ = "scheduled_calls"

    patient_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("patients.id"),
        nullable=False,
        index=True,
    )

    start_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    retry_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    # Monotonic, never exceeds max_attempts
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Cleared once the campaign is terminal
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="SCHEDULED, RUNNING, COMPLETED, FAILED, CANCELLED",
    )

    voicemail_template: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_scheduled_calls_due", "status", "next_attempt_at"),
    )

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts_made, 0)

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary for API responses."""
        return {
            "id": str(self.id),
            "patient_id": str(self.patient_id),
            "start_at": isoformat(self.start_at),
            "retry_interval_minutes": self.retry_interval_minutes,
            "max_attempts": self.max_attempts,
            "attempts_made": self.attempts_made,
            "next_attempt_at": isoformat(self.next_attempt_at),
            "status": self.status,
            "voicemail_template": self.voicemail_template,
            "created_at": isoformat(self.created_at),
        }


class CallAttemptModel(Base, UUIDMixin, TimestampMixin):
    """One dispatch of a campaign."""

    __tablename__ = "call_attempts"

    scheduled_call_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("scheduled_calls.id"),
        nullable=False,
        index=True,
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    call_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("calls.id"),
        nullable=False,
        unique=True,
    )
    outcome: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="IN_PROGRESS, ANSWERED, FAILED",
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("scheduled_call_id", "attempt_number", name="uq_call_attempts_number"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "scheduled_call_id": str(self.scheduled_call_id),
            "attempt_number": self.attempt_number,
            "call_id": str(self.call_id),
            "outcome": self.outcome,
            "ended_at": isoformat(self.ended_at),
        }
