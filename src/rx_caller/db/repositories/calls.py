"""Call Repository for rx-caller.

Specialized repository for call records, their append-only logs and
provider correlation lookups.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rx_caller.core.exceptions import CallNotFoundError
from rx_caller.core.state_machine import OPEN_CALL_STATUSES, CallStatus
from rx_caller.db.models.core import CallLogModel, CallModel, PatientModel
from rx_caller.db.repositories.base import BaseRepository, as_uuid


_OPEN_STATUSES = [status.value for status in OPEN_CALL_STATUSES]


class CallRepository(BaseRepository[CallModel]):
    """Repository for call database operations."""

    not_found_error = CallNotFoundError

    def __init__(self, session: AsyncSession):
        super().__init__(CallModel, session)

    # ========================================================================
    # Correlation
    # ========================================================================

    async def find_by_provider_id(self, provider_call_id: str) -> CallModel | None:
        """Find the call owning a provider correlation key."""
        stmt = select(CallModel).where(CallModel.provider_call_id == provider_call_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_latest_open_for_patient(self, patient_id: UUID | str) -> CallModel | None:
        """Most recent PENDING or IN_PROGRESS call for a patient."""
        stmt = (
            select(CallModel)
            .where(
                CallModel.patient_id == as_uuid(patient_id),
                CallModel.status.in_(_OPEN_STATUSES),
            )
            .order_by(CallModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_latest_open_for_phone(self, phone: str) -> CallModel | None:
        """Most recent open call for the patient with this phone number."""
        stmt = (
            select(CallModel)
            .join(PatientModel, PatientModel.id == CallModel.patient_id)
            .where(
                PatientModel.phone == phone,
                CallModel.status.in_(_OPEN_STATUSES),
            )
            .order_by(CallModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def bind_provider_id(self, call: CallModel, provider_call_id: str) -> bool:
        """Attach a provider id to a call that has none.

        The id is only bound when no other call owns it already.

        Returns:
            True if the id was stored
        """
        if call.provider_call_id is not None:
            return call.provider_call_id == provider_call_id

        owner = await self.find_by_provider_id(provider_call_id)
        if owner is not None:
            return False

        updated = await self.update_where(
            call.id,
            {"provider_call_id": None},
            {"provider_call_id": provider_call_id},
        )
        await self.refresh(call)
        return updated == 1

    # ========================================================================
    # Status Writes
    # ========================================================================

    async def transition_status(
        self,
        call: CallModel,
        expected_status: CallStatus | str,
        values: dict[str, Any],
    ) -> bool:
        """Apply a status change only if the row still holds ``expected_status``.

        Args:
            call: Call instance (refreshed after the write)
            expected_status: Status the caller read before deciding
            values: Columns to write, including the new ``status``

        Returns:
            False when a concurrent writer changed the status first
        """
        values = dict(values)
        if isinstance(values.get("status"), CallStatus):
            values["status"] = values["status"].value

        updated = await self.update_where(
            call.id,
            {"status": CallStatus(expected_status).value},
            values,
        )
        await self.refresh(call)
        return updated == 1

    # ========================================================================
    # Listing
    # ========================================================================

    async def list_calls(
        self,
        *,
        status: str | None = None,
        patient_id: UUID | str | None = None,
        scheduled_call_id: UUID | str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[CallModel]:
        """List calls newest first with optional filters."""
        return await self.get_multi(
            skip=skip,
            limit=limit,
            status=status,
            patient_id=as_uuid(patient_id) if patient_id else None,
            scheduled_call_id=as_uuid(scheduled_call_id) if scheduled_call_id else None,
        )

    # ========================================================================
    # Logs
    # ========================================================================

    async def append_log(
        self,
        call_id: UUID | str,
        event_type: str,
        data: dict[str, Any] | None,
        timestamp: datetime,
    ) -> CallLogModel:
        """Insert a log entry. Logs are never updated or deleted."""
        entry = CallLogModel(
            call_id=as_uuid(call_id),
            event_type=event_type,
            data=data or {},
            timestamp=timestamp,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def get_logs(self, call_id: UUID | str) -> Sequence[CallLogModel]:
        """All log entries for a call in insertion order."""
        stmt = (
            select(CallLogModel)
            .where(CallLogModel.call_id == as_uuid(call_id))
            .order_by(CallLogModel.id)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()
