"""Campaign Service.

Owns ScheduledCall and CallAttempt rows: campaign management, advancing a
due campaign by one attempt, and folding call outcomes back into the
campaign. The periodic driver lives in
:mod:`rx_caller.services.campaign_scheduler`.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Sequence
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from rx_caller.core.clock import Clock, to_naive_utc, utcnow
from rx_caller.core.exceptions import CampaignValidationError, ScheduleError
from rx_caller.core.logging import get_logger
from rx_caller.core.state_machine import AttemptOutcome, CallStatus, ScheduleStatus
from rx_caller.db.models.core import CallModel, PatientModel
from rx_caller.db.models.scheduling import CallAttemptModel, ScheduledCallModel
from rx_caller.db.repositories.patients import PatientRepository
from rx_caller.db.repositories.schedules import CallAttemptRepository, ScheduledCallRepository
from rx_caller.integrations.voice.base import DispatchGateway

log = get_logger(__name__)


# Accepted campaign parameter ranges
MIN_RETRY_INTERVAL_MINUTES = 5
MAX_RETRY_INTERVAL_MINUTES = 1440
MIN_ATTEMPTS = 1
MAX_ATTEMPTS = 10

DEFAULT_RETRY_INTERVAL_MINUTES = 60
DEFAULT_MAX_ATTEMPTS = 3


class AttemptAction:
    """What dispatch_attempt did with a campaign."""

    DISPATCHED = "dispatched"
    DEFERRED = "deferred"
    EXHAUSTED = "exhausted"
    AWAITING_OUTCOME = "awaiting_outcome"
    SKIPPED = "skipped"


def is_within_hours(hour: int, start: int, end: int) -> bool:
    """Whether a local hour falls in the allowed window ``[start, end)``.

    A window with ``start > end`` wraps past midnight; ``start == end``
    places no restriction.
    """
    if start == end:
        return True
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def next_window_start(now: datetime, start: int, tz: ZoneInfo) -> datetime:
    """Next occurrence of ``start`` o'clock in ``tz`` after ``now``.

    Args:
        now: Naive UTC reference time
        start: Local start hour
        tz: Zone the hour is expressed in

    Returns:
        Naive UTC datetime
    """
    local_now = now.replace(tzinfo=timezone.utc).astimezone(tz)
    candidate = local_now.replace(hour=start, minute=0, second=0, microsecond=0)
    if candidate <= local_now:
        candidate += timedelta(days=1)
    return to_naive_utc(candidate)


class CampaignService:
    """Retry campaign operations bound to one session."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock = utcnow,
        gateway: DispatchGateway | None = None,
        timezone_name: str = "UTC",
        dispatch_timeout: float = 15.0,
    ) -> None:
        self.session = session
        self.clock = clock
        self.gateway = gateway
        self.tz = ZoneInfo(timezone_name)
        self.dispatch_timeout = dispatch_timeout
        self.schedules = ScheduledCallRepository(session)
        self.attempts = CallAttemptRepository(session)
        self.patients = PatientRepository(session)

    # ========================================================================
    # Campaign Management
    # ========================================================================

    async def create_schedule(
        self,
        patient_id: UUID | str,
        start_at: datetime,
        *,
        retry_interval_minutes: int = DEFAULT_RETRY_INTERVAL_MINUTES,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        voicemail_template: str | None = None,
    ) -> ScheduledCallModel:
        """Create a SCHEDULED campaign whose first attempt is due at ``start_at``.

        Raises:
            PatientNotFoundError: Unknown patient
            CampaignValidationError: Parameters out of range
        """
        if not MIN_RETRY_INTERVAL_MINUTES <= retry_interval_minutes <= MAX_RETRY_INTERVAL_MINUTES:
            raise CampaignValidationError(
                f"retry_interval_minutes must be between {MIN_RETRY_INTERVAL_MINUTES} "
                f"and {MAX_RETRY_INTERVAL_MINUTES}",
                details={"retry_interval_minutes": retry_interval_minutes},
            )
        if not MIN_ATTEMPTS <= max_attempts <= MAX_ATTEMPTS:
            raise CampaignValidationError(
                f"max_attempts must be between {MIN_ATTEMPTS} and {MAX_ATTEMPTS}",
                details={"max_attempts": max_attempts},
            )

        patient = await self.patients.get_or_raise(patient_id)
        start = to_naive_utc(start_at)
        now = self.clock()

        schedule = ScheduledCallModel(
            patient_id=patient.id,
            start_at=start,
            retry_interval_minutes=retry_interval_minutes,
            max_attempts=max_attempts,
            attempts_made=0,
            next_attempt_at=start,
            status=ScheduleStatus.SCHEDULED.value,
            voicemail_template=voicemail_template,
            created_at=now,
            updated_at=now,
        )
        await self.schedules.create(schedule)

        log.info(
            "Campaign scheduled",
            scheduled_call_id=str(schedule.id),
            patient_id=str(patient.id),
            start_at=start.isoformat(),
            max_attempts=max_attempts,
        )
        return schedule

    async def get(self, scheduled_call_id: UUID | str) -> ScheduledCallModel:
        """Get a campaign or raise ScheduleNotFoundError."""
        return await self.schedules.get_or_raise(scheduled_call_id)

    async def list(
        self,
        *,
        status: str | None = None,
        patient_id: UUID | str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[ScheduledCallModel]:
        return await self.schedules.list_schedules(
            status=status, patient_id=patient_id, skip=skip, limit=limit
        )

    async def list_attempts(self, scheduled_call_id: UUID | str) -> Sequence[CallAttemptModel]:
        return await self.attempts.list_for_schedule(scheduled_call_id)

    async def cancel(self, scheduled_call_id: UUID | str) -> ScheduledCallModel:
        """Stop a campaign; calls already in flight are left alone.

        Raises:
            ScheduleNotFoundError: Unknown campaign
            ScheduleError: Campaign already finished
        """
        schedule = await self.schedules.get_or_raise(scheduled_call_id)
        if ScheduleStatus(schedule.status).is_terminal:
            raise ScheduleError(
                f"Campaign is already {schedule.status}",
                details={"scheduled_call_id": str(schedule.id), "status": schedule.status},
            )

        updated = await self.schedules.update_if_active(
            schedule,
            {"status": ScheduleStatus.CANCELLED, "next_attempt_at": None},
        )
        if not updated:
            raise ScheduleError(
                "Campaign changed concurrently",
                details={"scheduled_call_id": str(schedule.id), "status": schedule.status},
            )

        log.info("Campaign cancelled", scheduled_call_id=str(schedule.id))
        return schedule

    # ========================================================================
    # Advancing Campaigns
    # ========================================================================

    def next_allowed_time(self, patient: PatientModel, now: datetime) -> datetime | None:
        """When the patient may next be called, or None if ``now`` is allowed."""
        hours = patient.allowed_hours
        if hours is None:
            configured = (patient.call_preferences or {}).get("allowed_hours")
            if configured is not None:
                log.warning(
                    "Ignoring invalid allowed hours",
                    patient_id=str(patient.id),
                    allowed_hours=configured,
                )
            return None

        start, end = hours
        local_hour = now.replace(tzinfo=timezone.utc).astimezone(self.tz).hour
        if is_within_hours(local_hour, start, end):
            return None
        return next_window_start(now, start, self.tz)

    async def dispatch_attempt(
        self,
        scheduled_call_id: UUID | str,
        now: datetime | None = None,
    ) -> str:
        """Advance one due campaign by at most one attempt.

        The claim (attempt counter, status and next due time) is a
        conditional update on the counter that was read, so two schedulers
        can never both create attempt N. The claim, the Call and the
        CallAttempt are committed before the provider is contacted.

        Returns:
            One of the AttemptAction values
        """
        from rx_caller.services.call_lifecycle import CallLifecycleService

        now = now or self.clock()
        schedule = await self.schedules.get_or_raise(scheduled_call_id)
        schedule_id = str(schedule.id)

        if ScheduleStatus(schedule.status).is_terminal:
            return AttemptAction.SKIPPED
        if schedule.next_attempt_at is None or schedule.next_attempt_at > now:
            return AttemptAction.SKIPPED

        read_attempts = schedule.attempts_made

        if read_attempts >= schedule.max_attempts:
            return await self._finish_exhausted(schedule, now)

        patient = await self.patients.get_or_raise(schedule.patient_id)
        deferred_until = self.next_allowed_time(patient, now)
        if deferred_until is not None:
            await self.schedules.update_if_active(
                schedule,
                {"next_attempt_at": deferred_until},
                attempts_made=read_attempts,
            )
            log.info(
                "Campaign deferred to allowed hours",
                scheduled_call_id=schedule_id,
                next_attempt_at=deferred_until.isoformat(),
            )
            return AttemptAction.DEFERRED

        attempt_number = read_attempts + 1
        next_attempt_at = max(now, schedule.start_at) + timedelta(
            minutes=schedule.retry_interval_minutes
        )
        claimed = await self.schedules.update_if_active(
            schedule,
            {
                "attempts_made": attempt_number,
                "status": ScheduleStatus.RUNNING,
                "next_attempt_at": next_attempt_at,
            },
            attempts_made=read_attempts,
        )
        if not claimed:
            log.info("Campaign claimed elsewhere", scheduled_call_id=schedule_id)
            return AttemptAction.SKIPPED

        lifecycle = CallLifecycleService(
            self.session,
            self.gateway,
            clock=self.clock,
            campaigns=self,
            dispatch_timeout=self.dispatch_timeout,
        )
        call = await lifecycle.create_call(patient.id, scheduled_call_id=schedule.id)
        await self.attempts.create(
            CallAttemptModel(
                scheduled_call_id=schedule.id,
                attempt_number=attempt_number,
                call_id=call.id,
                outcome=AttemptOutcome.IN_PROGRESS.value,
                created_at=now,
                updated_at=now,
            )
        )
        await self.session.commit()

        log.info(
            "Campaign attempt started",
            scheduled_call_id=schedule_id,
            attempt_number=attempt_number,
            call_id=str(call.id),
        )

        await lifecycle.dispatch(call)
        return AttemptAction.DISPATCHED

    async def _finish_exhausted(self, schedule: ScheduledCallModel, now: datetime) -> str:
        latest = await self.attempts.latest_for_schedule(schedule.id)

        if latest is not None and latest.outcome == AttemptOutcome.IN_PROGRESS.value:
            # The last call gets one more retry interval to report its outcome
            deadline = latest.created_at + timedelta(
                minutes=schedule.retry_interval_minutes * 2
            )
            if now < deadline:
                await self.schedules.update_if_active(
                    schedule,
                    {"status": ScheduleStatus.RUNNING, "next_attempt_at": deadline},
                    attempts_made=schedule.attempts_made,
                )
                log.info(
                    "Campaign waiting for last attempt",
                    scheduled_call_id=str(schedule.id),
                    call_id=str(latest.call_id),
                    deadline=deadline.isoformat(),
                )
                return AttemptAction.AWAITING_OUTCOME

            log.warning(
                "Last attempt never reported an outcome",
                scheduled_call_id=str(schedule.id),
                call_id=str(latest.call_id),
            )

        final = (
            ScheduleStatus.COMPLETED
            if latest is not None and latest.outcome == AttemptOutcome.ANSWERED.value
            else ScheduleStatus.FAILED
        )
        await self.schedules.update_if_active(
            schedule,
            {"status": final, "next_attempt_at": None},
            attempts_made=schedule.attempts_made,
        )
        log.info(
            "Campaign attempts exhausted",
            scheduled_call_id=str(schedule.id),
            attempts_made=schedule.attempts_made,
            status=final.value,
        )
        return AttemptAction.EXHAUSTED

    async def record_attempt_outcome(self, call: CallModel) -> None:
        """Fold a terminal call into its attempt and campaign.

        Idempotent: an attempt that is already resolved is left alone, and
        terminal campaigns are never touched.
        """
        if call.scheduled_call_id is None:
            return

        status = CallStatus(call.status)
        if not status.is_terminal:
            return

        attempt = await self.attempts.find_by_call_id(call.id)
        if attempt is None:
            log.warning(
                "No attempt recorded for campaign call",
                call_id=str(call.id),
                scheduled_call_id=str(call.scheduled_call_id),
            )
            return

        outcome = AttemptOutcome.ANSWERED if status == CallStatus.COMPLETED else AttemptOutcome.FAILED
        resolved = await self.attempts.resolve(attempt, outcome, ended_at=self.clock())
        if not resolved:
            return

        schedule = await self.schedules.get(call.scheduled_call_id)
        if schedule is None or ScheduleStatus(schedule.status).is_terminal:
            return

        if outcome == AttemptOutcome.ANSWERED:
            values = {"status": ScheduleStatus.COMPLETED, "next_attempt_at": None}
        elif schedule.attempts_made >= schedule.max_attempts:
            values = {"status": ScheduleStatus.FAILED, "next_attempt_at": None}
        else:
            values = {"status": ScheduleStatus.RUNNING}

        await self.schedules.update_if_active(schedule, values)
        log.info(
            "Campaign attempt resolved",
            scheduled_call_id=str(schedule.id),
            attempt_number=attempt.attempt_number,
            outcome=outcome.value,
            campaign_status=schedule.status,
        )
