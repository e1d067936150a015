"""Dependency Injection for rx-caller.

Provides FastAPI dependency functions for services and components.

Thread Safety:
    Singleton factories use threading.Lock() to prevent races during
    concurrent initialization.

Usage:
    from rx_caller.dependencies import LifecycleDep

    @router.post("/calls")
    async def create_call(lifecycle: LifecycleDep):
        ...
"""

from __future__ import annotations

import threading
from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rx_caller.api.webhook_security import WebhookSecurityConfig, WebhookSecurityManager
from rx_caller.config import Settings, get_settings
from rx_caller.db.session import get_db as _get_db
from rx_caller.db.session import get_session_factory
from rx_caller.integrations.voice.base import DispatchGateway
from rx_caller.integrations.voice.factory import get_dispatch_gateway
from rx_caller.services.call_lifecycle import CallLifecycleService
from rx_caller.services.campaign_scheduler import CampaignScheduler, SchedulerConfig
from rx_caller.services.campaigns import CampaignService
from rx_caller.services.webhook_dispatcher import WebhookDispatcher


# =============================================================================
# Thread-Safe Singleton Locks
# =============================================================================

_security_lock = threading.Lock()
_scheduler_lock = threading.Lock()

_security_manager: WebhookSecurityManager | None = None
_scheduler: CampaignScheduler | None = None


# =============================================================================
# Settings Dependency
# =============================================================================


def get_app_settings() -> Settings:
    """Get application settings.

    Returns cached settings instance.
    """
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


# =============================================================================
# Database Dependencies
# =============================================================================


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for request.

    Yields session that auto-commits on success, rolls back on error.
    """
    async for session in _get_db():
        yield session


DatabaseDep = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# Integration Dependencies
# =============================================================================


def get_gateway() -> DispatchGateway:
    """Get the configured outbound dispatch gateway."""
    return get_dispatch_gateway()


GatewayDep = Annotated[DispatchGateway, Depends(get_gateway)]


def get_webhook_security() -> WebhookSecurityManager:
    """Get webhook security manager.

    Thread-safe via double-checked locking pattern.
    """
    global _security_manager

    if _security_manager is None:
        with _security_lock:
            if _security_manager is None:
                settings = get_settings()
                config = WebhookSecurityConfig(
                    secret=settings.webhooks.secret,
                    signature_headers=list(settings.webhooks.signature_headers),
                    allow_unverified=settings.webhooks.allow_unverified,
                    require_secret=settings.is_production,
                )
                _security_manager = WebhookSecurityManager(config)

    return _security_manager


WebhookSecurityDep = Annotated[WebhookSecurityManager, Depends(get_webhook_security)]


# =============================================================================
# Service Dependencies
# =============================================================================


def get_campaign_service(db: DatabaseDep, settings: SettingsDep) -> CampaignService:
    """Campaign service bound to the request session."""
    return CampaignService(
        db,
        timezone_name=settings.scheduler.timezone,
        dispatch_timeout=settings.voice.timeout_seconds,
    )


CampaignServiceDep = Annotated[CampaignService, Depends(get_campaign_service)]


def get_lifecycle_service(
    db: DatabaseDep,
    gateway: GatewayDep,
    campaigns: CampaignServiceDep,
    settings: SettingsDep,
) -> CallLifecycleService:
    """Call lifecycle service bound to the request session."""
    return CallLifecycleService(
        db,
        gateway,
        campaigns=campaigns,
        dispatch_timeout=settings.voice.timeout_seconds,
    )


LifecycleDep = Annotated[CallLifecycleService, Depends(get_lifecycle_service)]


def get_webhook_dispatcher(lifecycle: LifecycleDep) -> WebhookDispatcher:
    """Webhook dispatcher bound to the request session."""
    return WebhookDispatcher(lifecycle)


WebhookDispatcherDep = Annotated[WebhookDispatcher, Depends(get_webhook_dispatcher)]


def get_campaign_scheduler() -> CampaignScheduler:
    """Get the process-wide campaign scheduler.

    Thread-safe via double-checked locking pattern.
    """
    global _scheduler

    if _scheduler is None:
        with _scheduler_lock:
            if _scheduler is None:
                settings = get_settings()
                _scheduler = CampaignScheduler(
                    session_factory=get_session_factory(),
                    gateway=get_dispatch_gateway(),
                    config=SchedulerConfig(
                        tick_interval_seconds=settings.scheduler.tick_interval_seconds,
                        batch_size=settings.scheduler.batch_size,
                        timezone=settings.scheduler.timezone,
                        dispatch_timeout_seconds=settings.voice.timeout_seconds,
                    ),
                )

    return _scheduler


SchedulerDep = Annotated[CampaignScheduler, Depends(get_campaign_scheduler)]


def reset_dependencies() -> None:
    """Reset all cached dependencies (for testing).

    Does not clean up resources, just clears references.
    """
    global _security_manager, _scheduler

    from rx_caller.integrations.voice.factory import reset_dispatch_gateway

    _security_manager = None
    _scheduler = None
    reset_dispatch_gateway()
