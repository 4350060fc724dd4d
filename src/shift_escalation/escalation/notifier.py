"""Transport wrapper for escalation steps.

Sends SMS and places calls with bounded retries and a circuit breaker
per transport. Exhausted retries never raise: an SMS is reported as not
delivered and a call as ``CallOutcome.FAILED`` so escalation moves on.
"""
from __future__ import annotations

from shift_escalation.config import EscalationSettings
from shift_escalation.core.exceptions import SmsDeliveryError
from shift_escalation.core.logging import get_logger, mask_phone
from shift_escalation.core.retry import (
    CircuitBreaker,
    CircuitOpen,
    RetryConfig,
    RetryExhausted,
    get_circuit_breaker,
    retry_async,
)
from shift_escalation.integrations.sms.base import SMSGateway, SMSMessage
from shift_escalation.integrations.voice.base import CallRequest, VoiceGateway
from shift_escalation.models import CallOutcome

log = get_logger(__name__)


class Notifier:
    """Retrying facade over the SMS and voice gateways."""

    def __init__(
        self,
        sms_gateway: SMSGateway,
        voice_gateway: VoiceGateway,
        settings: EscalationSettings | None = None,
        sms_breaker: CircuitBreaker | None = None,
        voice_breaker: CircuitBreaker | None = None,
    ) -> None:
        settings = settings or EscalationSettings()
        self.sms_gateway = sms_gateway
        self.voice_gateway = voice_gateway
        self.sms_retry = RetryConfig.for_transport(
            settings.sms_max_attempts, settings.sms_backoff_seconds
        )
        self.call_retry = RetryConfig.for_transport(
            settings.call_max_attempts, settings.call_backoff_seconds
        )
        self._sms_breaker = sms_breaker or get_circuit_breaker("sms", failure_threshold=10)
        self._voice_breaker = voice_breaker or get_circuit_breaker("voice", failure_threshold=10)

    async def send_sms(self, to: str, body: str, reference: str | None = None) -> bool:
        """Send one SMS; False once every attempt has failed."""
        message = SMSMessage(to=to, body=body, reference=reference)

        async def attempt() -> None:
            async with self._sms_breaker:
                result = await self.sms_gateway.send(message)
                if not result.success:
                    raise SmsDeliveryError(
                        result.error_message or "SMS not accepted by provider",
                        details={"reference": reference},
                    )

        try:
            await retry_async(attempt, config=self.sms_retry)
            return True
        except RetryExhausted as e:
            log.warning(
                "SMS delivery failed, recipient skipped",
                to=mask_phone(to),
                reference=reference,
                attempts=e.attempts,
                error=str(e.last_error),
            )
        except CircuitOpen as e:
            log.warning("SMS circuit open, recipient skipped", to=mask_phone(to), error=str(e))
        return False

    async def place_call(self, request: CallRequest) -> tuple[CallOutcome, str | None]:
        """Place one call.

        Returns:
            The call outcome and, for a failed placement, the last error
        """

        async def attempt() -> CallOutcome:
            async with self._voice_breaker:
                return await self.voice_gateway.place_call(request)

        try:
            outcome = await retry_async(attempt, config=self.call_retry)
            return outcome, None
        except RetryExhausted as e:
            log.warning(
                "Call placement failed",
                call_id=request.call_id,
                to=mask_phone(request.to),
                attempts=e.attempts,
                error=str(e.last_error),
            )
            return CallOutcome.FAILED, str(e.last_error)
        except CircuitOpen as e:
            log.warning("Voice circuit open, call not placed", call_id=request.call_id)
            return CallOutcome.FAILED, str(e)
