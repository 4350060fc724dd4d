"""Twilio Messages API gateway.

Wave and confirmation texts go out here. Replies come back through the
inbound SMS webhook (``shift_escalation.api.sms_webhooks``).
"""
from __future__ import annotations

from datetime import datetime

import httpx

from shift_escalation.core.logging import get_logger
from shift_escalation.integrations.sms.base import (
    SMSGateway,
    SMSMessage,
    SMSResult,
    SMSStatus,
)
from shift_escalation.integrations.twilio_rest import (
    TwilioRestClient,
    error_details,
    is_success,
)

log = get_logger(__name__)

TWILIO_STATUS_MAP: dict[str, SMSStatus] = {
    "accepted": SMSStatus.PENDING,
    "queued": SMSStatus.PENDING,
    "sending": SMSStatus.PENDING,
    "sent": SMSStatus.SENT,
    "delivered": SMSStatus.DELIVERED,
    "failed": SMSStatus.FAILED,
    "undelivered": SMSStatus.FAILED,
    "canceled": SMSStatus.FAILED,
}


class TwilioSMSGateway(SMSGateway):
    """Sends through a Messaging Service when one is configured, else from ``from_number``."""

    provider = "twilio"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        messaging_service_sid: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self._rest = TwilioRestClient(account_sid, auth_token, timeout=timeout, transport=transport)

    def _form(self, message: SMSMessage, to: str) -> dict[str, str]:
        form = {"To": to, "Body": message.body}
        if self.messaging_service_sid:
            form["MessagingServiceSid"] = self.messaging_service_sid
        else:
            form["From"] = message.from_number or self.from_number
        return form

    def _failed(self, error: str) -> SMSResult:
        return SMSResult(
            success=False,
            status=SMSStatus.FAILED,
            provider=self.provider,
            error_message=error,
        )

    async def send(self, message: SMSMessage) -> SMSResult:
        to = self.normalize_phone(message.to)

        try:
            response = await self._rest.create("Messages", self._form(message, to))
        except httpx.TimeoutException:
            log.error("Twilio SMS timed out", to=to, reference=message.reference)
            return self._failed("Request timeout")
        except httpx.HTTPError as e:
            log.error("Twilio SMS request error", to=to, error=str(e))
            return self._failed(str(e))

        if not is_success(response):
            code, error = error_details(response)
            log.error(
                "Twilio rejected SMS",
                to=to,
                status_code=response.status_code,
                error_code=code,
                error=error,
            )
            return self._failed(f"[{code}] {error}")

        body = response.json()
        status = body.get("status", "queued")
        log.info(
            "SMS accepted by Twilio",
            message_sid=body.get("sid"),
            to=to,
            status=status,
            reference=message.reference,
        )
        return SMSResult(
            success=True,
            message_id=body.get("sid", ""),
            status=TWILIO_STATUS_MAP.get(status, SMSStatus.PENDING),
            provider=self.provider,
            sent_at=datetime.now(),
            segments=int(body.get("num_segments") or 1),
        )

    async def get_status(self, message_id: str) -> SMSStatus:
        try:
            response = await self._rest.fetch("Messages", message_id)
        except httpx.HTTPError as e:
            log.warning("Twilio status lookup failed", message_id=message_id, error=str(e))
            return SMSStatus.UNKNOWN

        if not is_success(response):
            return SMSStatus.UNKNOWN
        return TWILIO_STATUS_MAP.get(response.json().get("status", ""), SMSStatus.UNKNOWN)

    async def close(self) -> None:
        await self._rest.aclose()
