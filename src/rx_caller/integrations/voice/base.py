"""Base Outbound Dispatch Gateway Interface.

Defines the abstract interface for voice providers that originate
outbound calls. Implementations either return a DispatchResult or
raise DispatchError; they never return a silent failure.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import httpx

from rx_caller.core.exceptions import DispatchError
from rx_caller.core.logging import get_logger

log = get_logger(__name__)


@dataclass
class DispatchResult:
    """Acknowledgement of an accepted outbound call."""

    provider_call_id: str | None = None
    status: str | None = None
    provider: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider_call_id": self.provider_call_id,
            "status": self.status,
            "provider": self.provider,
        }


class DispatchGateway(ABC):
    """Abstract base class for outbound voice providers."""

    name: str = "base"

    @abstractmethod
    async def initiate_call(
        self,
        destination_number: str,
        patient_id: str,
        patient_name: str | None = None,
    ) -> DispatchResult:
        """Ask the provider to place a call.

        Args:
            destination_number: Number to dial (E.164)
            patient_id: Passed back to us in webhook metadata
            patient_name: Optional name for the assistant

        Returns:
            Result carrying the provider call id, if the provider assigned one

        Raises:
            DispatchError: The provider rejected the request or was unreachable
            DispatchTimeoutError: The provider did not answer in time
        """

    async def close(self) -> None:
        """Release network resources."""


class MockDispatchGateway(DispatchGateway):
    """Mock gateway for development and testing.

    Returns ``mock-<uuid>`` ids and records the most recent requests. Set
    ``fail_with`` to make the next calls raise, or ``delay`` to simulate a
    slow provider.

    With ``simulate_after`` and a ``webhook_url`` the gateway also plays the
    provider's part: after that many seconds it posts signed call-started,
    transcript and call-ended events for each accepted call, so calls finish
    in development without a real provider.
    """

    name = "mock"

    def __init__(
        self,
        *,
        fail_with: Exception | None = None,
        delay: float = 0.0,
        max_recorded: int = 1000,
        simulate_after: float | None = None,
        webhook_url: str | None = None,
        webhook_secret: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._calls: deque[dict[str, Any]] = deque(maxlen=max_recorded)
        self.fail_with = fail_with
        self.delay = delay

        self.simulate_after = simulate_after
        self.webhook_url = webhook_url
        self.webhook_secret = webhook_secret
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._simulations: set[asyncio.Task] = set()

    @property
    def simulates_events(self) -> bool:
        return self.simulate_after is not None and bool(self.webhook_url)

    async def initiate_call(
        self,
        destination_number: str,
        patient_id: str,
        patient_name: str | None = None,
    ) -> DispatchResult:
        if self.delay:
            await asyncio.sleep(self.delay)

        request = {
            "destination_number": destination_number,
            "patient_id": patient_id,
            "patient_name": patient_name,
        }
        self._calls.append(request)

        if self.fail_with is not None:
            if isinstance(self.fail_with, DispatchError):
                raise self.fail_with
            raise DispatchError(str(self.fail_with), cause=self.fail_with)

        provider_call_id = f"mock-{uuid4()}"
        log.info(
            "Mock call dispatched",
            provider_call_id=provider_call_id,
            patient_id=patient_id,
        )

        if self.simulates_events:
            task = asyncio.create_task(
                self._simulate_call(provider_call_id, destination_number, patient_id, patient_name)
            )
            self._simulations.add(task)
            task.add_done_callback(self._simulations.discard)

        return DispatchResult(
            provider_call_id=provider_call_id,
            status="queued",
            provider=self.name,
            raw={"id": provider_call_id, "status": "queued"},
        )

    def simulated_events(
        self,
        provider_call_id: str,
        destination_number: str,
        patient_id: str,
        patient_name: str | None = None,
    ) -> list[dict[str, Any]]:
        """Webhook bodies a successful provider call would produce."""
        common = {
            "callId": provider_call_id,
            "phoneNumber": destination_number,
            "metadata": {"patientId": patient_id, "patientName": patient_name},
        }
        name = patient_name or "the patient"
        return [
            {"event": "call-started", "data": {**common, "status": "in-progress"}},
            {
                "event": "transcript",
                "data": {
                    **common,
                    "speaker": "agent",
                    "text": f"Hello, this is your pharmacy calling for {name}.",
                },
            },
            {
                "event": "transcript",
                "data": {**common, "speaker": "patient", "text": "Yes, speaking."},
            },
            {
                "event": "call-ended",
                "data": {
                    **common,
                    "summary": (
                        f"Identity verified for {name}. Medication changes: none. "
                        "Delivery confirmed."
                    ),
                    "successEvaluation": True,
                    "durationSeconds": 10,
                    "reason": "completed(mock)",
                },
            },
        ]

    async def _simulate_call(
        self,
        provider_call_id: str,
        destination_number: str,
        patient_id: str,
        patient_name: str | None,
    ) -> None:
        await asyncio.sleep(self.simulate_after or 0)

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0, transport=self._transport)

        events = self.simulated_events(
            provider_call_id, destination_number, patient_id, patient_name
        )
        for payload in events:
            body = json.dumps(payload).encode("utf-8")
            headers = {"Content-Type": "application/json"}
            if self.webhook_secret:
                signature = hmac.new(
                    self.webhook_secret.encode("utf-8"), body, hashlib.sha256
                ).hexdigest()
                headers["X-Vapi-Signature"] = signature

            try:
                response = await self._client.post(self.webhook_url, content=body, headers=headers)
            except httpx.HTTPError as e:
                log.warning(
                    "Mock webhook delivery failed",
                    provider_call_id=provider_call_id,
                    event_type=payload["event"],
                    error=str(e),
                )
                return

            if not response.is_success:
                log.warning(
                    "Mock webhook rejected",
                    provider_call_id=provider_call_id,
                    event_type=payload["event"],
                    status_code=response.status_code,
                )
                return

        log.info("Mock call simulated", provider_call_id=provider_call_id)

    async def wait_for_simulations(self) -> None:
        """Wait until every pending simulated call has delivered its events."""
        if self._simulations:
            await asyncio.gather(*self._simulations, return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._simulations):
            task.cancel()
        if self._simulations:
            await asyncio.gather(*self._simulations, return_exceptions=True)
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def get_calls(self) -> list[dict[str, Any]]:
        """Requests received so far (for testing)."""
        return list(self._calls)

    def clear_calls(self) -> None:
        self._calls.clear()
