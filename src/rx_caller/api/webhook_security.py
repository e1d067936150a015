"""Webhook security and signature verification.

Provider webhooks are signed with HMAC-SHA256 over the raw request body.
The signature may arrive in any of several headers, optionally prefixed
with ``sha256=``, and hex or base64 encoded.

Security measures:
- HMAC signature verification on the unparsed body
- Constant-time comparison
- Refusal to run unsigned in production
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping

from rx_caller.core.exceptions import InvalidSignatureError, WebhookNotConfiguredError
from rx_caller.core.logging import get_logger

if TYPE_CHECKING:
    from fastapi import Request

log = get_logger(__name__)


DEFAULT_SIGNATURE_HEADERS = [
    "X-Vapi-Signature",
    "X-Vapi-Signature-V1",
    "Vapi-Signature",
    "X-Signature",
]


@dataclass
class WebhookSecurityConfig:
    """Webhook security configuration."""

    secret: str = ""
    signature_headers: list[str] = field(
        default_factory=lambda: list(DEFAULT_SIGNATURE_HEADERS)
    )

    # Accept bad signatures with a warning (development only)
    allow_unverified: bool = False

    # Without a secret: reject (production) or skip verification
    require_secret: bool = False


class HMACSignatureValidator:
    """HMAC-SHA256 body signature validator."""

    PREFIX = "sha256="

    def __init__(self, secret: str) -> None:
        """Initialize validator.

        Args:
            secret: Shared webhook secret
        """
        self.secret = secret

    def digest(self, body: bytes) -> bytes:
        """Raw HMAC-SHA256 digest of ``body``."""
        return hmac.new(self.secret.encode("utf-8"), body, hashlib.sha256).digest()

    def sign(self, body: bytes) -> str:
        """Hex signature of ``body`` (for tests and local tooling)."""
        return self.digest(body).hex()

    def validate(self, signature: str, body: bytes) -> bool:
        """Validate a signature in hex or base64 form.

        Args:
            signature: Header value, optionally ``sha256=``-prefixed
            body: Raw request body

        Returns:
            True if signature is valid
        """
        if not self.secret:
            log.warning("Webhook secret not configured")
            return False

        candidate = signature.strip()
        if candidate.lower().startswith(self.PREFIX):
            candidate = candidate[len(self.PREFIX):]
        if not candidate:
            return False

        expected = self.digest(body)

        # Constant-time comparison
        if hmac.compare_digest(expected.hex().encode(), candidate.lower().encode("utf-8")):
            return True

        try:
            decoded = base64.b64decode(candidate, validate=True)
        except (binascii.Error, ValueError):
            return False
        return hmac.compare_digest(expected, decoded)


class WebhookSecurityManager:
    """Verifies provider webhook requests.

    Usage:
        security = WebhookSecurityManager(config)

        @router.post("/voice/webhook")
        async def webhook(request: Request):
            body = await security.verify(request)
            ...
    """

    def __init__(self, config: WebhookSecurityConfig) -> None:
        self.config = config
        self._hmac = HMACSignatureValidator(config.secret)

    def extract_signature(self, headers: Mapping[str, str]) -> str | None:
        """First non-empty signature among the configured headers."""
        for name in self.config.signature_headers:
            value = headers.get(name)
            if value:
                return value
        return None

    def verify_body(self, headers: Mapping[str, str], body: bytes, path: str = "") -> None:
        """Check a raw body against its signature header.

        Raises:
            WebhookNotConfiguredError: No secret while one is required
            InvalidSignatureError: Signature missing, or wrong and not tolerated
        """
        if not self.config.secret:
            if self.config.require_secret:
                log.error("Webhook secret missing in production", path=path)
                raise WebhookNotConfiguredError("Webhook secret not configured")
            log.warning("Webhook secret not configured, skipping verification", path=path)
            return

        signature = self.extract_signature(headers)
        if signature is None:
            log.warning("Webhook signature missing", path=path)
            raise InvalidSignatureError("Missing webhook signature")

        if self._hmac.validate(signature, body):
            log.debug("Webhook signature verified", path=path)
            return

        if self.config.allow_unverified:
            log.warning("Invalid webhook signature accepted (allow_unverified)", path=path)
            return

        log.warning("Invalid webhook signature", path=path)
        raise InvalidSignatureError("Invalid webhook signature")

    async def verify(self, request: "Request") -> bytes:
        """Verify a FastAPI request and return its raw body.

        Raises:
            WebhookNotConfiguredError: No secret while one is required
            InvalidSignatureError: Signature missing or invalid
        """
        body = await request.body()
        self.verify_body(request.headers, body, path=str(request.url.path))
        return body
