"""Campaign Scheduler Service.

Background job scheduler that advances due retry campaigns.
Runs as an asyncio task and fires a tick every interval.

Features:
- Non-overlapping ticks (a tick that starts while one runs is dropped)
- One session and transaction per campaign
- Per-campaign error isolation
- Graceful shutdown
- Metrics collection
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rx_caller.core.clock import Clock, utcnow
from rx_caller.core.logging import get_logger
from rx_caller.db.repositories.schedules import ScheduledCallRepository
from rx_caller.integrations.voice.base import DispatchGateway
from rx_caller.services.campaigns import AttemptAction, CampaignService

log = get_logger(__name__)


class SchedulerState(str, Enum):
    """Scheduler states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"


@dataclass
class SchedulerConfig:
    """Campaign scheduler configuration."""

    tick_interval_seconds: float = 30.0
    batch_size: int = 10  # Campaigns advanced per tick

    # Zone used for patient allowed hours
    timezone: str = "UTC"

    # Upper bound for one gateway call
    dispatch_timeout_seconds: float = 15.0


@dataclass
class SchedulerMetrics:
    """Scheduler performance metrics."""

    started_at: datetime | None = None
    ticks_run: int = 0
    ticks_skipped: int = 0
    campaigns_processed: int = 0
    attempts_dispatched: int = 0
    campaigns_deferred: int = 0
    campaigns_exhausted: int = 0
    errors: int = 0
    last_tick_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ticks_run": self.ticks_run,
            "ticks_skipped": self.ticks_skipped,
            "campaigns_processed": self.campaigns_processed,
            "attempts_dispatched": self.attempts_dispatched,
            "campaigns_deferred": self.campaigns_deferred,
            "campaigns_exhausted": self.campaigns_exhausted,
            "errors": self.errors,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_error": self.last_error,
        }


@dataclass
class TickResult:
    """What a single tick did."""

    now: datetime
    skipped: bool = False
    actions: dict[str, str] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "now": self.now.isoformat(),
            "skipped": self.skipped,
            "actions": dict(self.actions),
            "failures": dict(self.failures),
        }


class CampaignScheduler:
    """Background scheduler for retry campaigns.

    Usage:
        scheduler = CampaignScheduler(
            session_factory=get_session_factory(),
            gateway=get_dispatch_gateway(),
            config=SchedulerConfig(tick_interval_seconds=30),
        )

        # In application lifespan
        await scheduler.start()

        # When shutting down
        await scheduler.stop()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: DispatchGateway,
        config: SchedulerConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Initialize scheduler.

        Args:
            session_factory: Factory for per-campaign sessions
            gateway: Outbound dispatch gateway
            config: Scheduler configuration
            clock: Source of naive UTC "now"
        """
        self.config = config or SchedulerConfig()
        self._session_factory = session_factory
        self._gateway = gateway
        self._clock = clock

        self._state = SchedulerState.STOPPED
        self._task: asyncio.Task | None = None
        self._tick_tasks: set[asyncio.Task] = set()
        self._ticking = False
        self._metrics = SchedulerMetrics()

        # Stop event
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> SchedulerState:
        """Get current scheduler state."""
        return self._state

    @property
    def metrics(self) -> SchedulerMetrics:
        """Get scheduler metrics."""
        return self._metrics

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._state == SchedulerState.RUNNING

    @property
    def is_ticking(self) -> bool:
        return self._ticking

    async def start(self) -> None:
        """Start the scheduler background task."""
        if self._state != SchedulerState.STOPPED:
            log.warning("Scheduler already started", state=self._state.value)
            return

        self._state = SchedulerState.STARTING
        self._stop_event.clear()
        self._metrics = SchedulerMetrics(started_at=self._clock())

        self._task = asyncio.create_task(self._run_loop())
        self._state = SchedulerState.RUNNING

        log.info(
            "Campaign scheduler started",
            tick_interval_seconds=self.config.tick_interval_seconds,
            batch_size=self.config.batch_size,
        )

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop the scheduler gracefully.

        Args:
            timeout: Maximum time to wait for a running tick to finish
        """
        if self._state == SchedulerState.STOPPED:
            return

        log.info("Stopping campaign scheduler")
        self._state = SchedulerState.STOPPING
        self._stop_event.set()

        pending = [task for task in (self._task, *self._tick_tasks) if task is not None]
        if pending:
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            for task in not_done:
                log.warning("Scheduler stop timed out, cancelling task")
                task.cancel()
            if not_done:
                await asyncio.gather(*not_done, return_exceptions=True)

        self._task = None
        self._state = SchedulerState.STOPPED
        log.info("Campaign scheduler stopped")

    async def pause(self) -> None:
        """Pause the scheduler (no new ticks are fired)."""
        if self._state == SchedulerState.RUNNING:
            self._state = SchedulerState.PAUSED
            log.info("Campaign scheduler paused")

    async def resume(self) -> None:
        """Resume a paused scheduler."""
        if self._state == SchedulerState.PAUSED:
            self._state = SchedulerState.RUNNING
            log.info("Campaign scheduler resumed")

    async def _run_loop(self) -> None:
        """Fire a tick every interval until stopped.

        Ticks run as separate tasks so a slow tick does not delay the
        timer; an overlapping tick is dropped by :meth:`tick` itself.
        """
        while not self._stop_event.is_set():
            if self._state == SchedulerState.RUNNING:
                task = asyncio.create_task(self._safe_tick())
                self._tick_tasks.add(task)
                task.add_done_callback(self._tick_tasks.discard)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.config.tick_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass  # Normal timeout, next tick

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except Exception as e:
            self._metrics.errors += 1
            self._metrics.last_error = str(e)
            log.exception("Scheduler tick failed")

    async def tick(self, now: datetime | None = None) -> TickResult:
        """Advance every due campaign once.

        Args:
            now: Reference time (naive UTC); defaults to the clock

        Returns:
            TickResult; ``skipped`` is set when another tick was running
        """
        now = now or self._clock()

        if self._ticking:
            self._metrics.ticks_skipped += 1
            log.debug("Tick already running, skipping")
            return TickResult(now=now, skipped=True)

        self._ticking = True
        try:
            return await self._run_tick(now)
        finally:
            self._ticking = False

    async def _run_tick(self, now: datetime) -> TickResult:
        result = TickResult(now=now)

        async with self._session_factory() as session:
            due_ids = await ScheduledCallRepository(session).find_due_ids(
                now, limit=self.config.batch_size
            )

        if due_ids:
            log.info("Processing due campaigns", count=len(due_ids))

        for scheduled_call_id in due_ids:
            key = str(scheduled_call_id)
            try:
                action = await self._process_campaign(scheduled_call_id, now)
            except Exception as e:
                self._metrics.errors += 1
                self._metrics.last_error = str(e)
                result.failures[key] = str(e)
                log.exception("Campaign processing failed", scheduled_call_id=key)
                continue

            result.actions[key] = action
            self._record_action(action)

        self._metrics.ticks_run += 1
        self._metrics.last_tick_at = now
        return result

    async def _process_campaign(self, scheduled_call_id: UUID, now: datetime) -> str:
        async with self._session_factory() as session:
            service = CampaignService(
                session,
                clock=self._clock,
                gateway=self._gateway,
                timezone_name=self.config.timezone,
                dispatch_timeout=self.config.dispatch_timeout_seconds,
            )
            try:
                action = await service.dispatch_attempt(scheduled_call_id, now)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return action

    def _record_action(self, action: str) -> None:
        self._metrics.campaigns_processed += 1
        if action == AttemptAction.DISPATCHED:
            self._metrics.attempts_dispatched += 1
        elif action == AttemptAction.DEFERRED:
            self._metrics.campaigns_deferred += 1
        elif action == AttemptAction.EXHAUSTED:
            self._metrics.campaigns_exhausted += 1

    def get_status(self) -> dict[str, Any]:
        """Get scheduler status.

        Returns:
            Status dictionary
        """
        return {
            "state": self._state.value,
            "is_running": self.is_running,
            "is_ticking": self._ticking,
            "tick_interval_seconds": self.config.tick_interval_seconds,
            "batch_size": self.config.batch_size,
            "timezone": self.config.timezone,
            "metrics": self._metrics.to_dict(),
        }
