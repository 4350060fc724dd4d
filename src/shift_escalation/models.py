"""Domain models for shift escalation.

Plain dataclasses shared by the record store, the escalation steps and
the API layer. Persistence models live in ``shift_escalation.db.models``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class ShiftStatus(str, Enum):
    """Lifecycle status of a shift (job occurrence)."""

    OPEN = "open"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    UNFILLED_AFTER_ESCALATION = "unfilled_after_escalation"


class WorkItemKind(str, Enum):
    """Kind of delayed escalation step."""

    SMS_WAVE = "sms_wave"
    OUTBOUND_CALL = "outbound_call"


class CallOutcome(str, Enum):
    """Outcome of one outbound dial."""

    ACCEPTED = "accepted"
    DECLINED = "declined"
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    FAILED = "failed"


class ClaimChannel(str, Enum):
    """Edge through which an acceptance arrived."""

    SMS = "sms"
    VOICE = "voice"
    WEB = "web"


@dataclass
class StaffMember:
    """Staff member employed by a provider."""

    id: str
    provider_id: str
    first_name: str
    last_name: str = ""
    phone: str | None = None
    active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "active": self.active,
        }


@dataclass
class Shift:
    """A single scheduled unit of work needing a staff assignment."""

    id: str
    provider_id: str
    patient_id: str
    scheduled_at: datetime
    status: ShiftStatus = ShiftStatus.OPEN
    assigned_staff_id: str | None = None
    # Ordered pool of staff IDs designated for the patient
    pool_staff_ids: list[str] = field(default_factory=list)
    duration_minutes: int = 60
    patient_first_name: str = ""
    patient_last_name: str = ""
    suburb: str = ""
    # Staff member whose cancellation left the shift open
    vacated_by: str | None = None
    status_reason: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status == ShiftStatus.OPEN

    @property
    def ends_at(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)

    @property
    def patient_name(self) -> str:
        return f"{self.patient_first_name} {self.patient_last_name}".strip()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "patient_id": self.patient_id,
            "scheduled_at": self.scheduled_at.isoformat(),
            "status": self.status.value,
            "assigned_staff_id": self.assigned_staff_id,
            "pool_staff_ids": list(self.pool_staff_ids),
            "status_reason": self.status_reason,
        }


@dataclass
class ProviderPolicy:
    """Per-provider escalation overrides.

    None means "use the service-wide default".
    """

    provider_id: str
    outbound_enabled: bool | None = None
    max_rounds: int | None = None
    inter_call_delay_seconds: float | None = None
    inter_round_delay_seconds: float | None = None
    wait_minutes_after_waves: int | None = None
    call_message_template: str | None = None
    privacy_mode: bool | None = None


@dataclass
class CallAttempt:
    """Audit record of one outbound dial. Written once, never mutated."""

    shift_id: str
    round: int
    staff_id: str
    outcome: CallOutcome
    call_id: str
    staff_index: int = 0
    attempted_at: datetime = field(default_factory=datetime.now)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "shift_id": self.shift_id,
            "round": self.round,
            "staff_index": self.staff_index,
            "staff_id": self.staff_id,
            "outcome": self.outcome.value,
            "call_id": self.call_id,
            "attempted_at": self.attempted_at.isoformat(),
            "error": self.error,
        }


@dataclass
class Notification:
    """Audit record of one wave SMS."""

    shift_id: str
    staff_id: str
    wave: int
    sent_at: datetime = field(default_factory=datetime.now)
    success: bool = True


@dataclass
class ClaimResult:
    """Result of a claim attempt."""

    accepted: bool
    shift_id: str
    staff_id: str
    reason: str | None = None
    cancelled_items: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "shift_id": self.shift_id,
            "staff_id": self.staff_id,
            "reason": self.reason,
        }
