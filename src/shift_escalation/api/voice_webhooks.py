"""Twilio voice webhooks for outbound offer calls.

Every outbound call is keyed by our call id (``{shift}-r{round}-s{index}``),
which Twilio echoes back in the webhook path:

- ``twiml/{call_id}``: Twilio fetches the offer (Say inside a Gather)
- ``gather/{call_id}``: the keypress; 1 claims the shift, 2 declines
- ``status/{call_id}``: terminal call status for calls without a keypress

The webhooks resolve the pending call the voice gateway is waiting on.
"""

from fastapi import APIRouter, HTTPException, Request, Response

from shift_escalation.api.rate_limits import RateLimits, limiter
from shift_escalation.api.webhook_security import WebhookSecurityError, WebhookSecurityManager
from shift_escalation.core.exceptions import StaffNotFoundError
from shift_escalation.core.logging import get_logger
from shift_escalation.dependencies import (
    OrchestratorDep,
    SettingsDep,
    WebhookSecurityDep,
)
from shift_escalation.escalation.templates import VOICE_RESPONSES
from shift_escalation.integrations.twiml import offer_twiml, say_twiml
from shift_escalation.integrations.voice.twilio import (
    DIGIT_OUTCOMES,
    TWILIO_CALL_STATUS_MAP,
    TwilioVoiceGateway,
    get_pending_calls,
)
from shift_escalation.models import CallOutcome, ClaimChannel

log = get_logger(__name__)

router = APIRouter(prefix="/voice/twilio")


def _twiml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


async def _validate(request: Request, security: WebhookSecurityManager) -> None:
    try:
        await security.validate_twilio(request)
    except WebhookSecurityError as e:
        log.warning("Invalid Twilio voice webhook", path=str(request.url.path), error=str(e))
        raise HTTPException(status_code=403, detail=str(e))


@router.post("/twiml/{call_id}")
@limiter.limit(RateLimits.WEBHOOK)
async def offer(
    request: Request,
    call_id: str,
    settings: SettingsDep,
    security: WebhookSecurityDep,
) -> Response:
    """TwiML for an answered call: read the offer and wait for a keypress."""
    await _validate(request, security)

    pending = get_pending_calls().get(call_id)
    if pending is None:
        log.warning("TwiML requested for unknown call", call_id=call_id)
        return _twiml(say_twiml(VOICE_RESPONSES["error"]))

    # Relative action URLs resolve against the TwiML URL
    base = settings.telephony.twilio.webhook_url.rstrip("/")
    action_url = f"{base}{TwilioVoiceGateway.WEBHOOK_PREFIX}/gather/{call_id}"

    return _twiml(
        offer_twiml(
            pending.request.message,
            action_url,
            gather_timeout=settings.integrations.voice.gather_timeout_seconds,
        )
    )


@router.post("/gather/{call_id}")
@limiter.limit(RateLimits.WEBHOOK)
async def gather(
    request: Request,
    call_id: str,
    orchestrator: OrchestratorDep,
    security: WebhookSecurityDep,
) -> Response:
    """Keypress result.

    Pressing 1 claims the shift right here, so the caller hears whether
    the shift is theirs before the call ends.
    """
    await _validate(request, security)

    form = await request.form()
    digits = str(form.get("Digits", "")).strip()

    registry = get_pending_calls()
    pending = registry.get(call_id)
    if pending is None:
        log.warning("Keypress for unknown call", call_id=call_id, digits=digits)
        return _twiml(say_twiml(VOICE_RESPONSES["error"]))

    outcome = DIGIT_OUTCOMES.get(digits[:1], CallOutcome.NO_ANSWER)
    log.info("Call keypress received", call_id=call_id, outcome=outcome.value)

    if outcome == CallOutcome.ACCEPTED:
        try:
            result = await orchestrator.claim(
                pending.request.shift_id,
                pending.request.staff_id,
                ClaimChannel.VOICE,
            )
            accepted = result.accepted
        except StaffNotFoundError:
            accepted = False
        registry.resolve(call_id, outcome)
        phrase = "accepted" if accepted else "unavailable"
        return _twiml(say_twiml(VOICE_RESPONSES[phrase]))

    registry.resolve(call_id, outcome)
    phrase = "declined" if outcome == CallOutcome.DECLINED else "no_response"
    return _twiml(say_twiml(VOICE_RESPONSES[phrase]))


@router.post("/status/{call_id}")
@limiter.limit(RateLimits.WEBHOOK)
async def call_status(
    request: Request,
    call_id: str,
    security: WebhookSecurityDep,
) -> Response:
    """Call status callback; terminal statuses settle calls without a keypress."""
    await _validate(request, security)

    form = await request.form()
    call_status_value = str(form.get("CallStatus", "")).lower()

    outcome = TWILIO_CALL_STATUS_MAP.get(call_status_value)
    if outcome is None:
        log.debug("Non-terminal call status", call_id=call_id, status=call_status_value)
        return Response(status_code=204)

    resolved = get_pending_calls().resolve(call_id, outcome)
    log.info(
        "Call status received",
        call_id=call_id,
        status=call_status_value,
        resolved=resolved,
    )
    return Response(status_code=204)
