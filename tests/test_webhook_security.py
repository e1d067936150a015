"""Tests for webhook signature verification."""

from __future__ import annotations

import base64
import hashlib
import hmac

import pytest

from rx_caller.api.webhook_security import (
    HMACSignatureValidator,
    WebhookSecurityConfig,
    WebhookSecurityManager,
)
from rx_caller.core.exceptions import InvalidSignatureError, WebhookNotConfiguredError

SECRET = "s3cret"
BODY = b'{"event":"call-started","data":{"callId":"c-1"}}'


def _hex(body: bytes = BODY) -> str:
    return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


class TestHMACSignatureValidator:
    """Tests for HMACSignatureValidator."""

    def test_hex_signature(self):
        assert HMACSignatureValidator(SECRET).validate(_hex(), BODY)

    def test_prefixed_and_uppercase_hex(self):
        validator = HMACSignatureValidator(SECRET)

        assert validator.validate(f"sha256={_hex()}", BODY)
        assert validator.validate(_hex().upper(), BODY)

    def test_base64_signature(self):
        digest = hmac.new(SECRET.encode(), BODY, hashlib.sha256).digest()

        assert HMACSignatureValidator(SECRET).validate(base64.b64encode(digest).decode(), BODY)

    def test_tampered_body(self):
        assert not HMACSignatureValidator(SECRET).validate(_hex(), BODY + b" ")

    def test_wrong_secret(self):
        assert not HMACSignatureValidator("other").validate(_hex(), BODY)

    def test_empty_signature(self):
        assert not HMACSignatureValidator(SECRET).validate("sha256=", BODY)

    def test_no_secret_never_validates(self):
        assert not HMACSignatureValidator("").validate(_hex(), BODY)

    def test_sign_matches_hexdigest(self):
        assert HMACSignatureValidator(SECRET).sign(BODY) == _hex()


class TestWebhookSecurityManager:
    """Tests for WebhookSecurityManager."""

    def test_valid_signature_in_any_configured_header(self):
        manager = WebhookSecurityManager(WebhookSecurityConfig(secret=SECRET))

        manager.verify_body({"X-Signature": _hex()}, BODY)
        manager.verify_body({"Vapi-Signature": _hex()}, BODY)

    def test_missing_signature(self):
        manager = WebhookSecurityManager(WebhookSecurityConfig(secret=SECRET))

        with pytest.raises(InvalidSignatureError) as exc_info:
            manager.verify_body({}, BODY)

        assert exc_info.value.status_code == 401

    def test_invalid_signature(self):
        manager = WebhookSecurityManager(WebhookSecurityConfig(secret=SECRET))

        with pytest.raises(InvalidSignatureError):
            manager.verify_body({"X-Vapi-Signature": "deadbeef"}, BODY)

    def test_allow_unverified_accepts_bad_signature(self):
        manager = WebhookSecurityManager(
            WebhookSecurityConfig(secret=SECRET, allow_unverified=True)
        )

        manager.verify_body({"X-Vapi-Signature": "deadbeef"}, BODY)

    def test_allow_unverified_still_requires_a_signature(self):
        manager = WebhookSecurityManager(
            WebhookSecurityConfig(secret=SECRET, allow_unverified=True)
        )

        with pytest.raises(InvalidSignatureError):
            manager.verify_body({}, BODY)

    def test_no_secret_skips_verification_outside_production(self):
        manager = WebhookSecurityManager(WebhookSecurityConfig(secret=""))

        manager.verify_body({}, BODY)

    def test_no_secret_in_production(self):
        manager = WebhookSecurityManager(
            WebhookSecurityConfig(secret="", require_secret=True)
        )

        with pytest.raises(WebhookNotConfiguredError):
            manager.verify_body({"X-Vapi-Signature": _hex()}, BODY)

    def test_custom_header_list(self):
        manager = WebhookSecurityManager(
            WebhookSecurityConfig(secret=SECRET, signature_headers=["X-Custom-Sig"])
        )

        manager.verify_body({"X-Custom-Sig": _hex()}, BODY)
        with pytest.raises(InvalidSignatureError):
            manager.verify_body({"X-Vapi-Signature": _hex()}, BODY)
