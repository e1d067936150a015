"""Vapi Outbound Dispatch Gateway.

POSTs call requests to a Vapi-compatible HTTP API. The endpoint path is
configurable to adapt to provider API differences.
"""
from __future__ import annotations

from typing import Any

import httpx

from rx_caller.core.exceptions import DispatchError, DispatchTimeoutError
from rx_caller.core.logging import get_logger
from rx_caller.integrations.voice.base import DispatchGateway, DispatchResult

log = get_logger(__name__)


class VapiDispatchGateway(DispatchGateway):
    """Vapi voice assistant gateway.

    Attributes:
        api_key: Bearer token for the provider API
        assistant_id: Assistant that runs the conversation
        webhook_url: Where the provider posts call events
    """

    name = "vapi"

    def __init__(
        self,
        api_key: str,
        *,
        assistant_id: str | None = None,
        webhook_url: str | None = None,
        base_url: str = "https://api.vapi.ai",
        calls_path: str = "/v1/call",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the gateway.

        Args:
            api_key: Provider API key
            assistant_id: Optional assistant id sent with each call
            webhook_url: Optional webhook URL sent with each call
            base_url: Provider API root
            calls_path: Path of the create-call endpoint
            timeout: HTTP request timeout
            transport: Custom httpx transport (for testing)
        """
        self.api_key = api_key
        self.assistant_id = assistant_id or None
        self.webhook_url = webhook_url or None
        self.timeout = timeout

        self.endpoint = base_url.rstrip("/") + (
            calls_path if calls_path.startswith("/") else f"/{calls_path}"
        )

        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
        )

    def build_payload(
        self,
        destination_number: str,
        patient_id: str,
        patient_name: str | None = None,
    ) -> dict[str, Any]:
        """Request body; carries both phoneNumber and to for compatibility."""
        payload: dict[str, Any] = {
            "phoneNumber": destination_number,
            "to": destination_number,
            "metadata": {"patientId": patient_id, "patientName": patient_name},
        }
        if self.assistant_id:
            payload["assistantId"] = self.assistant_id
        if self.webhook_url:
            payload["webhookUrl"] = self.webhook_url
        return payload

    async def initiate_call(
        self,
        destination_number: str,
        patient_id: str,
        patient_name: str | None = None,
    ) -> DispatchResult:
        payload = self.build_payload(destination_number, patient_id, patient_name)

        try:
            response = await self._client.post(self.endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise DispatchTimeoutError(
                f"Vapi call timed out after {self.timeout}s",
                details={"endpoint": self.endpoint},
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise DispatchError(
                f"Vapi request failed: {e}",
                details={"endpoint": self.endpoint},
                cause=e,
            ) from e

        if not response.is_success:
            log.warning(
                "Vapi rejected call",
                status_code=response.status_code,
                patient_id=patient_id,
            )
            raise DispatchError(
                f"Vapi call failed: {response.status_code} {response.text}",
                details={"status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        provider_call_id = data.get("id") or data.get("callId") or data.get("conversationId")

        log.info(
            "Vapi call dispatched",
            provider_call_id=provider_call_id,
            patient_id=patient_id,
        )

        return DispatchResult(
            provider_call_id=str(provider_call_id) if provider_call_id else None,
            status=data.get("status"),
            provider=self.name,
            raw=data,
        )

    async def close(self) -> None:
        await self._client.aclose()
