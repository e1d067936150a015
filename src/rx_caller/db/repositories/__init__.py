"""Repository Layer for rx-caller.

Base:
- BaseRepository: Generic CRUD operations and conditional updates

Specialized:
- PatientRepository: Patient lookups
- CallRepository: Call records, logs and correlation
- ScheduledCallRepository: Retry campaigns
- CallAttemptRepository: Campaign attempts
"""

from rx_caller.db.repositories.base import BaseRepository
from rx_caller.db.repositories.calls import CallRepository
from rx_caller.db.repositories.patients import PatientRepository
from rx_caller.db.repositories.schedules import CallAttemptRepository, ScheduledCallRepository

__all__ = [
    "BaseRepository",
    "CallRepository",
    "PatientRepository",
    "ScheduledCallRepository",
    "CallAttemptRepository",
]
