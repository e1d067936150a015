"""Patient Repository for rx-caller.

Patients are reference data; the core only reads them.
"""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from rx_caller.core.exceptions import PatientNotFoundError
from rx_caller.db.models.core import PatientModel
from rx_caller.db.repositories.base import BaseRepository


class PatientRepository(BaseRepository[PatientModel]):
    """Repository for patient lookups."""

    not_found_error = PatientNotFoundError

    def __init__(self, session: AsyncSession):
        super().__init__(PatientModel, session)

    async def find_by_phone(self, phone: str) -> PatientModel | None:
        """Find a patient by destination number."""
        return await self.find_one(phone=phone)
