"""Process-wide voice gateway selected from ``integrations.voice.provider``.

Twilio voice also needs a public webhook URL for the TwiML, keypress
and status callbacks; without it the mock gateway is used.
"""

from __future__ import annotations

from shift_escalation.config import get_settings
from shift_escalation.core.logging import get_logger
from shift_escalation.integrations.twilio_rest import credentials_missing
from shift_escalation.integrations.voice.base import MockVoiceGateway, VoiceGateway

log = get_logger(__name__)

_voice_gateway: VoiceGateway | None = None


def _build_gateway() -> VoiceGateway:
    settings = get_settings()
    voice = settings.integrations.voice
    provider = voice.provider.lower()

    if provider == "twilio":
        problem = credentials_missing(settings, need_webhook=True)
        if problem is None:
            from shift_escalation.integrations.voice.twilio import TwilioVoiceGateway

            twilio = settings.telephony.twilio
            return TwilioVoiceGateway(
                account_sid=twilio.account_sid,
                auth_token=twilio.auth_token,
                from_number=twilio.from_number,
                webhook_url=twilio.webhook_url,
                ring_timeout=voice.ring_timeout_seconds,
                answer_timeout=voice.answer_timeout_seconds,
            )
        log.warning("Twilio voice unavailable, using mock", reason=problem)
    elif provider != "mock":
        log.warning("Unknown voice provider, using mock", provider=provider)

    return MockVoiceGateway()


def get_voice_gateway() -> VoiceGateway:
    global _voice_gateway
    if _voice_gateway is None:
        _voice_gateway = _build_gateway()
        log.info("Voice gateway ready", provider=_voice_gateway.provider)
    return _voice_gateway


def set_voice_gateway(gateway: VoiceGateway) -> None:
    global _voice_gateway
    _voice_gateway = gateway


def reset_voice_gateway() -> None:
    global _voice_gateway
    _voice_gateway = None
