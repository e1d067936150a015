"""Dispatch Gateway Factory.

Creates the outbound voice gateway based on configuration.

Supported providers:
- vapi: Vapi-compatible HTTP API
- mock: For development and testing
"""

from __future__ import annotations

from rx_caller.config import Settings, get_settings
from rx_caller.core.logging import get_logger
from rx_caller.integrations.voice.base import DispatchGateway, MockDispatchGateway

log = get_logger(__name__)


# Singleton instance
_dispatch_gateway: DispatchGateway | None = None


def _mock_gateway(settings: Settings) -> MockDispatchGateway:
    voice = settings.voice
    if voice.mock_simulate_seconds is None:
        return MockDispatchGateway()

    webhook_url = voice.webhook_url or (
        f"http://127.0.0.1:{settings.api_port}/api/v1/voice/webhook"
    )
    log.info(
        "Mock gateway will simulate call events",
        webhook_url=webhook_url,
        after_seconds=voice.mock_simulate_seconds,
    )
    return MockDispatchGateway(
        simulate_after=voice.mock_simulate_seconds,
        webhook_url=webhook_url,
        webhook_secret=settings.webhooks.secret,
    )


def get_dispatch_gateway() -> DispatchGateway:
    """Get the configured dispatch gateway.

    Returns:
        Gateway instance based on config.
    """
    global _dispatch_gateway

    if _dispatch_gateway is not None:
        return _dispatch_gateway

    settings = get_settings()
    voice = settings.voice
    provider = voice.provider.lower()
    log.info("Initializing dispatch gateway", provider=provider)

    if provider == "vapi":
        if not voice.api_key:
            log.warning("Vapi API key not configured, using mock gateway")
            _dispatch_gateway = _mock_gateway(settings)
        else:
            from rx_caller.integrations.voice.vapi import VapiDispatchGateway

            _dispatch_gateway = VapiDispatchGateway(
                api_key=voice.api_key,
                assistant_id=voice.assistant_id,
                webhook_url=voice.webhook_url,
                base_url=voice.base_url,
                calls_path=voice.calls_path,
                timeout=voice.timeout_seconds,
            )
            log.info("Vapi dispatch gateway initialized", endpoint=_dispatch_gateway.endpoint)

    elif provider == "mock":
        _dispatch_gateway = _mock_gateway(settings)

    else:
        log.warning("Unknown voice provider, using mock", provider=provider)
        _dispatch_gateway = _mock_gateway(settings)

    return _dispatch_gateway


def reset_dispatch_gateway() -> None:
    """Reset the dispatch gateway (for testing)."""
    global _dispatch_gateway
    _dispatch_gateway = None
