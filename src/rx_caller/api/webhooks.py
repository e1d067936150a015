"""Voice provider webhook endpoint.

Security:
- Requests are verified with HMAC-SHA256 over the raw body before parsing
- See webhook_security.py for implementation details

Every well-formed envelope is acknowledged with 200, including events
that match no call and event names we do not handle, so the provider
does not retry them.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from pydantic import BaseModel

from rx_caller.core.exceptions import WebhookPayloadError
from rx_caller.core.logging import get_logger
from rx_caller.dependencies import WebhookDispatcherDep, WebhookSecurityDep
from rx_caller.services.provider_events import parse_envelope

log = get_logger(__name__)

router = APIRouter()


class WebhookResponse(BaseModel):
    """Webhook acknowledgement."""

    success: bool = True
    event: str
    kind: str
    call_id: str | None = None
    action: str


@router.post("/voice/webhook", response_model=WebhookResponse)
async def handle_voice_webhook(
    request: Request,
    security: WebhookSecurityDep,
    dispatcher: WebhookDispatcherDep,
) -> WebhookResponse:
    """Receive a call event from the voice provider.

    Returns:
        Acknowledgement naming the matched call and the action taken

    Raises:
        InvalidSignatureError: 401 on a missing or bad signature
        WebhookPayloadError: 400 on a body that is not an event envelope
    """
    body = await security.verify(request)

    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        log.warning("Webhook body is not valid JSON", error=str(e))
        raise WebhookPayloadError("Invalid JSON body", cause=e) from e

    event = parse_envelope(payload)
    log.info(
        "Provider webhook received",
        event_type=event.event,
        provider_call_id=event.provider_call_id,
    )

    outcome = await dispatcher.dispatch(event)
    return WebhookResponse(success=True, **outcome.to_dict())
