"""Business services for rx-caller.

- CallLifecycleService: call state transitions and logs
- CampaignService: retry campaigns and attempts
- CampaignScheduler: periodic campaign driver
- WebhookDispatcher: provider event routing
"""

from rx_caller.services.call_lifecycle import CallLifecycleService, LogEvent
from rx_caller.services.campaign_scheduler import (
    CampaignScheduler,
    SchedulerConfig,
    SchedulerState,
    TickResult,
)
from rx_caller.services.campaigns import AttemptAction, CampaignService
from rx_caller.services.webhook_dispatcher import DispatchOutcome, WebhookDispatcher

__all__ = [
    "CallLifecycleService",
    "LogEvent",
    "CampaignService",
    "AttemptAction",
    "CampaignScheduler",
    "SchedulerConfig",
    "SchedulerState",
    "TickResult",
    "WebhookDispatcher",
    "DispatchOutcome",
]
