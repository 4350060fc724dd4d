"""Inbound SMS webhook.

Staff reply YES or NO to a wave SMS. A YES claims the most recent shift
the sender was offered; the reply goes back as TwiML.

Security:
- Requests must carry a valid X-Twilio-Signature (unless disabled)
"""

from fastapi import APIRouter, HTTPException, Request, Response

from shift_escalation.api.rate_limits import RateLimits, limiter
from shift_escalation.api.webhook_security import WebhookSecurityError
from shift_escalation.core.exceptions import StaffNotFoundError
from shift_escalation.core.logging import get_logger, mask_phone
from shift_escalation.dependencies import (
    OrchestratorDep,
    WebhookSecurityDep,
)
from shift_escalation.escalation.orchestrator import EscalationOrchestrator
from shift_escalation.escalation.templates import SMS_REPLIES, render_confirmation_sms
from shift_escalation.integrations.twiml import message_twiml
from shift_escalation.models import ClaimChannel

log = get_logger(__name__)

router = APIRouter(prefix="/sms")

ACCEPT_KEYWORDS = frozenset({"YES", "Y", "ACCEPT", "1"})
DECLINE_KEYWORDS = frozenset({"NO", "N", "DECLINE", "2"})


def parse_reply(body: str) -> str | None:
    """Classify an SMS reply as "accept", "decline" or None."""
    words = body.strip().upper().split()
    if not words:
        return None
    keyword = words[0].strip(".!,")
    if keyword in ACCEPT_KEYWORDS:
        return "accept"
    if keyword in DECLINE_KEYWORDS:
        return "decline"
    return None


async def handle_inbound_sms(
    orchestrator: EscalationOrchestrator,
    from_number: str,
    body: str,
) -> str:
    """Process one inbound SMS and return the reply text."""
    store = orchestrator.store
    staff = await store.find_staff_by_phone(from_number)
    if staff is None:
        log.info("SMS from unknown sender", from_number=mask_phone(from_number))
        return SMS_REPLIES["unknown_sender"]

    action = parse_reply(body)
    if action is None:
        return SMS_REPLIES["help"]

    shift_id = await store.latest_offer_for_staff(staff.id)
    if shift_id is None:
        log.info("SMS reply without an offer", staff_id=staff.id, action=action)
        return SMS_REPLIES["no_offer"]

    if action == "decline":
        log.info("Offer declined by SMS", shift_id=shift_id, staff_id=staff.id)
        return SMS_REPLIES["declined"]

    try:
        result = await orchestrator.claim(shift_id, staff.id, ClaimChannel.SMS)
    except StaffNotFoundError:
        return SMS_REPLIES["no_offer"]
    if not result.accepted:
        return result.reason or SMS_REPLIES["no_offer"]

    shift = await store.get_shift(shift_id)
    return render_confirmation_sms(shift)


@router.post("/twilio/inbound")
@limiter.limit(RateLimits.WEBHOOK)
async def twilio_inbound_sms(
    request: Request,
    orchestrator: OrchestratorDep,
    security: WebhookSecurityDep,
) -> Response:
    """Handle an inbound SMS from Twilio.

    Twilio sends form data with From, To and Body.
    """
    try:
        await security.validate_twilio(request)
    except WebhookSecurityError as e:
        log.warning("Invalid Twilio SMS webhook", path=str(request.url.path), error=str(e))
        raise HTTPException(status_code=403, detail=str(e))

    form = await request.form()
    from_number = str(form.get("From", ""))
    body = str(form.get("Body", ""))

    reply = await handle_inbound_sms(orchestrator, from_number, body)
    return Response(content=message_twiml(reply), media_type="application/xml")
