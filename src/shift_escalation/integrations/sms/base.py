"""SMS gateway interface and the in-memory gateway used in development.

Gateways report failures through ``SMSResult.success`` instead of
raising; the escalation notifier decides whether to retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4

from shift_escalation.core.logging import get_logger
from shift_escalation.phone import normalize_phone

log = get_logger(__name__)

GSM7_SINGLE, GSM7_PART = 160, 153
UCS2_SINGLE, UCS2_PART = 70, 67


def count_segments(text: str) -> int:
    """Billable segments for ``text`` (GSM-7 if pure ASCII, else UCS-2)."""
    single, part = (GSM7_SINGLE, GSM7_PART) if text.isascii() else (UCS2_SINGLE, UCS2_PART)
    if len(text) <= single:
        return 1
    return -(-len(text) // part)


class SMSStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass
class SMSMessage:
    to: str
    body: str
    from_number: str | None = None
    reference: str | None = None  # work item key or "confirm-{shift}"


@dataclass
class SMSResult:
    success: bool
    message_id: str | None = None
    status: SMSStatus = SMSStatus.UNKNOWN
    provider: str = ""
    error_message: str | None = None
    sent_at: datetime | None = None
    segments: int = 1


class SMSGateway(ABC):
    """Sends single text messages through one provider."""

    provider: str = ""

    @abstractmethod
    async def send(self, message: SMSMessage) -> SMSResult:
        """Hand one message to the provider."""

    @abstractmethod
    async def get_status(self, message_id: str) -> SMSStatus:
        """Delivery status of a previously sent message."""

    async def close(self) -> None:
        pass

    def normalize_phone(self, phone: str) -> str:
        return normalize_phone(phone)


@dataclass
class SentSMS:
    message_id: str
    to: str
    body: str
    reference: str | None = None
    sent_at: datetime = field(default_factory=datetime.now)


class MockSMSGateway(SMSGateway):
    """Keeps sent messages in memory.

    Numbers in ``failing_numbers`` fail every send; numbers in
    ``flaky_numbers`` fail the given number of times, then succeed.
    """

    provider = "mock"

    def __init__(
        self,
        failing_numbers: set[str] | None = None,
        flaky_numbers: dict[str, int] | None = None,
    ):
        self.failing_numbers = {normalize_phone(p) for p in failing_numbers or ()}
        self.flaky_numbers = {normalize_phone(p): n for p, n in (flaky_numbers or {}).items()}
        self.send_calls = 0
        self._sent: list[SentSMS] = []

    def _should_fail(self, to: str) -> bool:
        if to in self.failing_numbers:
            return True
        remaining = self.flaky_numbers.get(to, 0)
        if remaining > 0:
            self.flaky_numbers[to] = remaining - 1
            return True
        return False

    async def send(self, message: SMSMessage) -> SMSResult:
        self.send_calls += 1
        to = self.normalize_phone(message.to)

        if self._should_fail(to):
            log.info("Mock SMS failed", to=to, reference=message.reference)
            return SMSResult(
                success=False,
                status=SMSStatus.FAILED,
                provider=self.provider,
                error_message="Simulated delivery failure",
            )

        sent = SentSMS(message_id=str(uuid4()), to=to, body=message.body, reference=message.reference)
        self._sent.append(sent)
        log.info("Mock SMS sent", to=to, reference=message.reference)

        return SMSResult(
            success=True,
            message_id=sent.message_id,
            status=SMSStatus.SENT,
            provider=self.provider,
            sent_at=sent.sent_at,
            segments=count_segments(message.body),
        )

    async def get_status(self, message_id: str) -> SMSStatus:
        if any(sent.message_id == message_id for sent in self._sent):
            return SMSStatus.SENT
        return SMSStatus.UNKNOWN

    def get_sent_messages(self) -> list[SentSMS]:
        return list(self._sent)

    def messages_to(self, phone: str) -> list[str]:
        wanted = self.normalize_phone(phone)
        return [sent.body for sent in self._sent if sent.to == wanted]
