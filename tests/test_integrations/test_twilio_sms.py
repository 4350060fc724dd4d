"""Tests for the Twilio SMS gateway."""

from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import pytest

from shift_escalation.integrations.sms.base import SMSMessage, SMSStatus
from shift_escalation.integrations.sms.twilio import TwilioSMSGateway


def make_gateway(handler, **kwargs) -> TwilioSMSGateway:
    return TwilioSMSGateway(
        account_sid="AC123",
        auth_token="secret",
        from_number="+61299990000",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestSend:
    """Test Messages API calls."""

    @pytest.mark.asyncio
    async def test_success(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                201, json={"sid": "SM1", "status": "queued", "num_segments": "2"}
            )

        gateway = make_gateway(handler)
        result = await gateway.send(SMSMessage(to="0400 000 001", body="JOB AVAILABLE"))
        await gateway.close()

        assert result.success
        assert result.message_id == "SM1"
        assert result.status == SMSStatus.PENDING
        assert result.segments == 2

        request = seen[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        form = parse_qs(request.content.decode())
        assert form["To"] == ["+61400000001"]
        assert form["From"] == ["+61299990000"]
        assert form["Body"] == ["JOB AVAILABLE"]

    @pytest.mark.asyncio
    async def test_messaging_service_replaces_from(self):
        forms: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(201, json={"sid": "SM2", "status": "accepted"})

        gateway = make_gateway(handler, messaging_service_sid="MG9")
        await gateway.send(SMSMessage(to="+61400000001", body="hi"))
        await gateway.close()

        assert forms[0]["MessagingServiceSid"] == ["MG9"]
        assert "From" not in forms[0]

    @pytest.mark.asyncio
    async def test_error_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                content=json.dumps({"code": 21211, "message": "Invalid 'To' Phone Number"}),
            )

        gateway = make_gateway(handler)
        result = await gateway.send(SMSMessage(to="+61400000001", body="hi"))
        await gateway.close()

        assert not result.success
        assert result.status == SMSStatus.FAILED
        assert result.error_message == "[21211] Invalid 'To' Phone Number"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        gateway = make_gateway(handler)
        result = await gateway.send(SMSMessage(to="+61400000001", body="hi"))
        await gateway.close()

        assert not result.success
        assert result.error_message == "Request timeout"


class TestStatus:
    @pytest.mark.asyncio
    async def test_delivered(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"sid": "SM1", "status": "delivered"})

        gateway = make_gateway(handler)
        status = await gateway.get_status("SM1")
        await gateway.close()

        assert status == SMSStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_not_found(self):
        gateway = make_gateway(lambda request: httpx.Response(404))
        status = await gateway.get_status("SM404")
        await gateway.close()

        assert status == SMSStatus.UNKNOWN
