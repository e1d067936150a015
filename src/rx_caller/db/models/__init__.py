"""SQLAlchemy ORM models for rx-caller."""

from rx_caller.db.models.core import CallLogModel, CallModel, PatientModel
from rx_caller.db.models.scheduling import CallAttemptModel, ScheduledCallModel

__all__ = [
    "PatientModel",
    "CallModel",
    "CallLogModel",
    "ScheduledCallModel",
    "CallAttemptModel",
]
