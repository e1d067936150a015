"""Campaign Repositories for rx-caller.

Queries and conditional writes for retry campaigns and their attempts.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rx_caller.core.exceptions import RecordNotFoundError, ScheduleNotFoundError
from rx_caller.core.state_machine import (
    ACTIVE_SCHEDULE_STATUSES,
    AttemptOutcome,
    ScheduleStatus,
)
from rx_caller.db.models.scheduling import CallAttemptModel, ScheduledCallModel
from rx_caller.db.repositories.base import BaseRepository, as_uuid


_ACTIVE_STATUSES = [status.value for status in ACTIVE_SCHEDULE_STATUSES]


class ScheduledCallRepository(BaseRepository[ScheduledCallModel]):
    """Repository for retry campaigns."""

    not_found_error = ScheduleNotFoundError

    def __init__(self, session: AsyncSession):
        super().__init__(ScheduledCallModel, session)

    async def find_due_ids(self, now: datetime, limit: int = 10) -> list[UUID]:
        """IDs of active campaigns whose next attempt is due, oldest first.

        Args:
            now: Naive UTC reference time
            limit: Maximum campaigns to return
        """
        stmt = (
            select(ScheduledCallModel.id)
            .where(
                ScheduledCallModel.status.in_(_ACTIVE_STATUSES),
                ScheduledCallModel.next_attempt_at.is_not(None),
                ScheduledCallModel.next_attempt_at <= now,
            )
            .order_by(ScheduledCallModel.next_attempt_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_if_active(
        self,
        schedule: ScheduledCallModel,
        values: dict[str, Any],
        *,
        attempts_made: int | None = None,
    ) -> bool:
        """Write ``values`` while the campaign is still SCHEDULED or RUNNING.

        Args:
            schedule: Campaign instance (refreshed after the write)
            values: Columns to write
            attempts_made: If given, the row must still hold this count

        Returns:
            False when the campaign changed underneath us
        """
        expected: dict[str, Any] = {"status": _ACTIVE_STATUSES}
        if attempts_made is not None:
            expected["attempts_made"] = attempts_made

        values = {
            key: value.value if isinstance(value, ScheduleStatus) else value
            for key, value in values.items()
        }
        updated = await self.update_where(schedule.id, expected, values)
        await self.refresh(schedule)
        return updated == 1

    async def list_schedules(
        self,
        *,
        status: str | None = None,
        patient_id: UUID | str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[ScheduledCallModel]:
        """List campaigns newest first with optional filters."""
        return await self.get_multi(
            skip=skip,
            limit=limit,
            status=status,
            patient_id=as_uuid(patient_id) if patient_id else None,
        )


class CallAttemptRepository(BaseRepository[CallAttemptModel]):
    """Repository for campaign attempts."""

    not_found_error = RecordNotFoundError

    def __init__(self, session: AsyncSession):
        super().__init__(CallAttemptModel, session)

    async def find_by_call_id(self, call_id: UUID | str) -> CallAttemptModel | None:
        """Attempt that produced the given call."""
        return await self.find_one(call_id=as_uuid(call_id))

    async def latest_for_schedule(self, scheduled_call_id: UUID | str) -> CallAttemptModel | None:
        """Attempt with the highest number for a campaign."""
        stmt = (
            select(CallAttemptModel)
            .where(CallAttemptModel.scheduled_call_id == as_uuid(scheduled_call_id))
            .order_by(CallAttemptModel.attempt_number.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_schedule(self, scheduled_call_id: UUID | str) -> Sequence[CallAttemptModel]:
        """All attempts of a campaign by attempt number."""
        stmt = (
            select(CallAttemptModel)
            .where(CallAttemptModel.scheduled_call_id == as_uuid(scheduled_call_id))
            .order_by(CallAttemptModel.attempt_number)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def resolve(
        self,
        attempt: CallAttemptModel,
        outcome: AttemptOutcome,
        ended_at: datetime,
    ) -> bool:
        """Record an attempt's outcome once.

        Returns:
            False if the attempt was already resolved
        """
        updated = await self.update_where(
            attempt.id,
            {"outcome": AttemptOutcome.IN_PROGRESS.value},
            {"outcome": AttemptOutcome(outcome).value, "ended_at": ended_at},
        )
        await self.refresh(attempt)
        return updated == 1
