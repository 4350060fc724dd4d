"""Base Voice Gateway Interface.

A voice gateway places one outbound call, plays the shift offer and
reports what the callee did: pressed 1, pressed 2, never picked up,
was busy, or the call failed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from shift_escalation.core.exceptions import CallPlacementError
from shift_escalation.core.logging import get_logger, mask_phone
from shift_escalation.models import CallOutcome
from shift_escalation.phone import normalize_phone

log = get_logger(__name__)


@dataclass
class CallRequest:
    """One outbound offer call."""

    call_id: str  # "{shift_id}-r{round}-s{index}"
    to: str
    message: str
    shift_id: str
    staff_id: str
    round: int = 1
    requested_at: datetime = field(default_factory=datetime.now)


class VoiceGateway(ABC):
    """Abstract base class for voice gateways."""

    provider: str = ""

    @abstractmethod
    async def place_call(self, request: CallRequest) -> CallOutcome:
        """Dial, play the offer and wait for the callee's answer.

        Raises:
            CallPlacementError: The provider refused or could not be reached.
        """

    async def close(self) -> None:
        """Release any held connections."""


CallHook = Callable[[CallRequest], Awaitable[None]]


class MockVoiceGateway(VoiceGateway):
    """Scripted voice gateway for development and testing.

    ``outcomes`` maps a phone number to the outcome of its calls; a list
    is consumed one call at a time and its last entry repeats. Numbers
    without a script return ``default_outcome``. Numbers in
    ``failing_numbers`` raise CallPlacementError on every dial.

    ``on_call`` runs while the call is "ringing", which lets tests land
    a competing acceptance in the middle of a call.
    """

    provider = "mock"

    def __init__(
        self,
        outcomes: dict[str, CallOutcome | list[CallOutcome]] | None = None,
        default_outcome: CallOutcome = CallOutcome.NO_ANSWER,
        failing_numbers: set[str] | None = None,
        on_call: CallHook | None = None,
    ):
        self._scripts: dict[str, list[CallOutcome]] = {}
        for phone, outcome in (outcomes or {}).items():
            script = outcome if isinstance(outcome, list) else [outcome]
            self._scripts[normalize_phone(phone)] = list(script)
        self.default_outcome = default_outcome
        self.failing_numbers = {normalize_phone(p) for p in failing_numbers or ()}
        self.on_call = on_call
        self.placed_calls: list[CallRequest] = []
        self.dial_attempts = 0

    def script(self, phone: str, *outcomes: CallOutcome) -> None:
        self._scripts[normalize_phone(phone)] = list(outcomes)

    async def place_call(self, request: CallRequest) -> CallOutcome:
        self.dial_attempts += 1
        to = normalize_phone(request.to)

        if to in self.failing_numbers:
            log.info("Mock call placement failed", call_id=request.call_id, to=mask_phone(to))
            raise CallPlacementError(
                "Simulated call placement failure",
                details={"call_id": request.call_id},
            )

        self.placed_calls.append(request)

        if self.on_call is not None:
            await self.on_call(request)

        script = self._scripts.get(to)
        if script:
            outcome = script.pop(0) if len(script) > 1 else script[0]
        else:
            outcome = self.default_outcome

        log.info(
            "Mock call completed",
            call_id=request.call_id,
            to=mask_phone(to),
            outcome=outcome.value,
        )
        return outcome

    def calls_to(self, phone: str) -> list[CallRequest]:
        wanted = normalize_phone(phone)
        return [c for c in self.placed_calls if normalize_phone(c.to) == wanted]
