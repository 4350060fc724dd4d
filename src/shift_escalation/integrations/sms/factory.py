"""Process-wide SMS gateway selected from ``integrations.sms.provider``.

Twilio without credentials falls back to the mock gateway so local
development never sends real texts.
"""

from __future__ import annotations

from shift_escalation.config import get_settings
from shift_escalation.core.logging import get_logger
from shift_escalation.integrations.sms.base import MockSMSGateway, SMSGateway
from shift_escalation.integrations.twilio_rest import credentials_missing

log = get_logger(__name__)

_sms_gateway: SMSGateway | None = None


def _build_gateway() -> SMSGateway:
    settings = get_settings()
    provider = settings.integrations.sms.provider.lower()

    if provider == "twilio":
        problem = credentials_missing(settings)
        if problem is None:
            from shift_escalation.integrations.sms.twilio import TwilioSMSGateway

            twilio = settings.telephony.twilio
            return TwilioSMSGateway(
                account_sid=twilio.account_sid,
                auth_token=twilio.auth_token,
                from_number=twilio.from_number,
                messaging_service_sid=twilio.messaging_service_sid or None,
            )
        log.warning("Twilio SMS unavailable, using mock", reason=problem)
    elif provider != "mock":
        log.warning("Unknown SMS provider, using mock", provider=provider)

    return MockSMSGateway()


def get_sms_gateway() -> SMSGateway:
    global _sms_gateway
    if _sms_gateway is None:
        _sms_gateway = _build_gateway()
        log.info("SMS gateway ready", provider=_sms_gateway.provider)
    return _sms_gateway


def set_sms_gateway(gateway: SMSGateway) -> None:
    global _sms_gateway
    _sms_gateway = gateway


def reset_sms_gateway() -> None:
    global _sms_gateway
    _sms_gateway = None
