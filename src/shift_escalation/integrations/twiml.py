"""TwiML documents returned to Twilio webhooks."""
from __future__ import annotations

from xml.sax.saxutils import escape, quoteattr

from shift_escalation.escalation.templates import VOICE_RESPONSES

# Australian voice for spoken offers
TWIML_VOICE = "Google.en-AU-Wavenet-C"
TWIML_LANGUAGE = "en-AU"

_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'


def _say(text: str) -> str:
    return (
        f"<Say voice={quoteattr(TWIML_VOICE)} language={quoteattr(TWIML_LANGUAGE)}>"
        f"{escape(text)}</Say>"
    )


def offer_twiml(message: str, action_url: str, gather_timeout: int = 10) -> str:
    """Speak the offer and collect a single keypress (1 accept, 2 decline)."""
    return (
        f"{_HEADER}<Response>"
        f'<Gather numDigits="1" timeout="{gather_timeout}" '
        f'action={quoteattr(action_url)} method="POST">'
        f"{_say(message)}"
        "</Gather>"
        f"{_say(VOICE_RESPONSES['no_response'])}"
        "<Hangup/>"
        "</Response>"
    )


def say_twiml(text: str) -> str:
    """Speak a closing line and hang up."""
    return f"{_HEADER}<Response>{_say(text)}<Hangup/></Response>"


def message_twiml(text: str | None = None) -> str:
    """Reply to an inbound SMS. No text means no reply."""
    if not text:
        return f"{_HEADER}<Response/>"
    return f"{_HEADER}<Response><Message>{escape(text)}</Message></Response>"
