"""Outbound voice provider integration.

Supported providers:
- Vapi: HTTP API for AI voice assistants
- Mock: For development and testing
"""

from rx_caller.integrations.voice.base import (
    DispatchGateway,
    DispatchResult,
    MockDispatchGateway,
)
from rx_caller.integrations.voice.factory import (
    get_dispatch_gateway,
    reset_dispatch_gateway,
)

__all__ = [
    "DispatchGateway",
    "DispatchResult",
    "MockDispatchGateway",
    "get_dispatch_gateway",
    "reset_dispatch_gateway",
]
