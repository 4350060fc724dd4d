"""Twilio Voice Gateway Implementation.

Call flow:
1. POST /Calls.json with a TwiML URL and a status callback, both keyed
   by our call id
2. Twilio fetches the TwiML: the offer is spoken inside a <Gather>
3. The keypress lands on the gather webhook, which resolves the call
4. The status callback resolves calls that ended without a keypress
   (no-answer, busy, failed, hung up)

``place_call`` waits on a future in the PendingCallRegistry until one
of the webhooks resolves it or ``answer_timeout`` passes. The registry
lives in process memory, so the webhooks must reach the same process
that placed the call.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import httpx

from shift_escalation.core.exceptions import CallPlacementError
from shift_escalation.core.logging import get_logger
from shift_escalation.integrations.twilio_rest import (
    TwilioRestClient,
    error_details,
    is_success,
)
from shift_escalation.integrations.voice.base import CallRequest, VoiceGateway
from shift_escalation.models import CallOutcome

log = get_logger(__name__)


# Terminal Twilio call statuses; anything else is still in flight
TWILIO_CALL_STATUS_MAP: dict[str, CallOutcome] = {
    "completed": CallOutcome.NO_ANSWER,  # answered, hung up without a keypress
    "no-answer": CallOutcome.NO_ANSWER,
    "canceled": CallOutcome.NO_ANSWER,
    "busy": CallOutcome.BUSY,
    "failed": CallOutcome.FAILED,
}

DIGIT_OUTCOMES: dict[str, CallOutcome] = {
    "1": CallOutcome.ACCEPTED,
    "2": CallOutcome.DECLINED,
}


@dataclass
class PendingCall:
    request: CallRequest
    future: asyncio.Future = field(repr=False)
    provider_call_id: str | None = None


class PendingCallRegistry:
    """Calls waiting for a keypress or a terminal status callback."""

    def __init__(self) -> None:
        self._calls: dict[str, PendingCall] = {}

    def register(self, request: CallRequest) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._calls[request.call_id] = PendingCall(request=request, future=future)
        return future

    def get(self, call_id: str) -> PendingCall | None:
        return self._calls.get(call_id)

    def resolve(self, call_id: str, outcome: CallOutcome) -> bool:
        """Settle a pending call. The first resolution wins."""
        pending = self._calls.get(call_id)
        if pending is None or pending.future.done():
            return False
        pending.future.set_result(outcome)
        log.info("Call resolved", call_id=call_id, outcome=outcome.value)
        return True

    def discard(self, call_id: str) -> None:
        self._calls.pop(call_id, None)

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._calls


_registry: PendingCallRegistry | None = None


def get_pending_calls() -> PendingCallRegistry:
    global _registry
    if _registry is None:
        _registry = PendingCallRegistry()
    return _registry


def reset_pending_calls() -> None:
    global _registry
    _registry = None


class TwilioVoiceGateway(VoiceGateway):
    """Outbound offer calls through the Twilio Calls API."""

    WEBHOOK_PREFIX = "/api/v1/webhooks/voice/twilio"
    provider = "twilio"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        webhook_url: str,
        ring_timeout: int = 25,
        answer_timeout: float = 120.0,
        registry: PendingCallRegistry | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.from_number = from_number
        self.webhook_url = webhook_url.rstrip("/")
        self.ring_timeout = ring_timeout
        self.answer_timeout = answer_timeout
        self.registry = registry if registry is not None else get_pending_calls()

        self._rest = TwilioRestClient(account_sid, auth_token, timeout=timeout, transport=transport)

    def callback_url(self, kind: str, call_id: str) -> str:
        return f"{self.webhook_url}{self.WEBHOOK_PREFIX}/{kind}/{call_id}"

    def _call_form(self, request: CallRequest) -> dict[str, str | list[str]]:
        return {
            "To": request.to,
            "From": self.from_number,
            "Url": self.callback_url("twiml", request.call_id),
            "Method": "POST",
            "StatusCallback": self.callback_url("status", request.call_id),
            "StatusCallbackEvent": ["answered", "completed"],
            "StatusCallbackMethod": "POST",
            "Timeout": str(self.ring_timeout),
        }

    async def _dial(self, request: CallRequest) -> str | None:
        """Create the call at Twilio and return its SID."""
        try:
            response = await self._rest.create("Calls", self._call_form(request))
        except httpx.HTTPError as e:
            raise CallPlacementError(
                "Twilio call request failed",
                details={"call_id": request.call_id},
                cause=e,
            ) from e

        if not is_success(response):
            code, error = error_details(response)
            raise CallPlacementError(
                f"Twilio refused call: [{code}] {error}",
                details={"call_id": request.call_id, "twilio_code": code},
            )

        return response.json().get("sid")

    async def place_call(self, request: CallRequest) -> CallOutcome:
        future = self.registry.register(request)
        try:
            call_sid = await self._dial(request)
            self.registry.get(request.call_id).provider_call_id = call_sid
            log.info(
                "Call placed via Twilio",
                call_id=request.call_id,
                call_sid=call_sid,
                to=request.to,
            )

            try:
                return await asyncio.wait_for(future, timeout=self.answer_timeout)
            except asyncio.TimeoutError:
                log.warning(
                    "No call outcome before timeout",
                    call_id=request.call_id,
                    timeout=self.answer_timeout,
                )
                return CallOutcome.NO_ANSWER
        except CallPlacementError as e:
            log.error("Twilio call not placed", call_id=request.call_id, error=e.message)
            raise
        finally:
            self.registry.discard(request.call_id)

    async def close(self) -> None:
        await self._rest.aclose()
