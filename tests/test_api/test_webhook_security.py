"""Tests for Twilio webhook signature checks."""

from __future__ import annotations

import pytest

from conftest import AUTH_TOKEN, PUBLIC_URL, phone_for
from shift_escalation.api.webhook_security import (
    TwilioSignatureValidator,
    WebhookSecurityConfig,
    WebhookSecurityManager,
    _is_ip_in_network,
)
from shift_escalation.dependencies import get_webhook_security

INBOUND = "/api/v1/webhooks/sms/twilio/inbound"


@pytest.fixture
def enforcing(app):
    manager = WebhookSecurityManager(
        WebhookSecurityConfig(
            validate_signatures=True,
            twilio_auth_token=AUTH_TOKEN,
            public_base_url=PUBLIC_URL,
        )
    )
    app.dependency_overrides[get_webhook_security] = lambda: manager
    return manager


class TestSignatureValidator:
    def test_round_trip(self):
        validator = TwilioSignatureValidator("12345")
        params = {"CallSid": "CA123", "Digits": "1", "From": "+61400000001"}
        url = "https://escalation.example.com/api/v1/webhooks/voice/twilio/gather/c1"

        signature = validator.compute(url, params)

        assert validator.validate(signature, url, params)
        assert not validator.validate(signature, url, {**params, "Digits": "2"})
        assert not TwilioSignatureValidator("other").validate(signature, url, params)

    def test_missing_token_rejects(self):
        assert not TwilioSignatureValidator("").validate("abc", "https://example.com")

    def test_ip_networks(self):
        assert _is_ip_in_network("54.172.60.5", ["54.172.60.0/23"])
        assert _is_ip_in_network("10.0.0.1", ["10.0.0.1"])
        assert not _is_ip_in_network("not-an-ip", ["10.0.0.0/8"])


class TestEnforcedWebhooks:
    """Webhooks with signature validation on."""

    @pytest.mark.asyncio
    async def test_missing_signature_forbidden(self, client, enforcing):
        response = await client.post(INBOUND, data={"From": phone_for(1), "Body": "YES"})

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_valid_signature_accepted(self, client, enforcing):
        params = {"From": "+61499999999", "Body": "YES"}
        signature = TwilioSignatureValidator(AUTH_TOKEN).compute(PUBLIC_URL + INBOUND, params)

        response = await client.post(
            INBOUND, data=params, headers={"X-Twilio-Signature": signature}
        )

        assert response.status_code == 200
        assert "<Message>" in response.text

    @pytest.mark.asyncio
    async def test_voice_status_requires_signature(self, client, enforcing):
        response = await client.post(
            "/api/v1/webhooks/voice/twilio/status/shift-1-r1-s0",
            data={"CallStatus": "busy"},
        )

        assert response.status_code == 403


class TestSourceAllowList:
    """The test client connects from 127.0.0.1."""

    def _install(self, app, **config):
        manager = WebhookSecurityManager(WebhookSecurityConfig(validate_signatures=False, **config))
        app.dependency_overrides[get_webhook_security] = lambda: manager

    @pytest.mark.asyncio
    async def test_unlisted_source_forbidden(self, app, client):
        self._install(app, allowed_sources=["54.172.60.0/23"])

        response = await client.post(INBOUND, data={"From": "+61499999999", "Body": "YES"})

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_forwarded_for_from_trusted_proxy(self, app, client):
        self._install(app, allowed_sources=["54.172.60.0/23"], trusted_proxies=["127.0.0.1"])

        response = await client.post(
            INBOUND,
            data={"From": "+61499999999", "Body": "YES"},
            headers={"X-Forwarded-For": "54.172.60.5, 10.0.0.1"},
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_forwarded_for_ignored_without_trusted_proxy(self, app, client):
        self._install(app, allowed_sources=["54.172.60.0/23"])

        response = await client.post(
            INBOUND,
            data={"From": "+61499999999", "Body": "YES"},
            headers={"X-Forwarded-For": "54.172.60.5"},
        )

        assert response.status_code == 403
