"""ORM models for shifts, staff, provider policies, escalation audit records
and the durable work queue."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shift_escalation.db.base import Base, TimestampMixin, UUIDMixin
from shift_escalation.escalation.queue import WorkItem
from shift_escalation.models import (
    CallAttempt,
    CallOutcome,
    Notification,
    ProviderPolicy,
    Shift,
    ShiftStatus,
    StaffMember,
    WorkItemKind,
)


class ShiftModel(Base, TimestampMixin):
    """Shift (job occurrence) record."""

    __tablename__ = "shifts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)

    status: Mapped[str] = mapped_column(
        String(40),
        default=ShiftStatus.OPEN.value,
        nullable=False,
        index=True,
        comment="open, scheduled, cancelled, unfilled_after_escalation",
    )
    assigned_staff_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    pool_staff_ids: Mapped[list[str]] = mapped_column(
        JSON,
        default=list,
        nullable=False,
        comment="Ordered staff IDs designated for the patient",
    )
    vacated_by: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Staff member whose cancellation left the shift open",
    )

    patient_first_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    patient_last_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    suburb: Mapped[str] = mapped_column(String(100), default="", nullable=False)

    def to_domain(self) -> Shift:
        return Shift(
            id=self.id,
            provider_id=self.provider_id,
            patient_id=self.patient_id,
            scheduled_at=self.scheduled_at,
            status=ShiftStatus(self.status),
            assigned_staff_id=self.assigned_staff_id,
            pool_staff_ids=list(self.pool_staff_ids or []),
            duration_minutes=self.duration_minutes,
            patient_first_name=self.patient_first_name,
            patient_last_name=self.patient_last_name,
            suburb=self.suburb,
            vacated_by=self.vacated_by,
            status_reason=self.status_reason,
        )

    @classmethod
    def from_domain(cls, shift: Shift) -> "ShiftModel":
        return cls(
            id=shift.id,
            provider_id=shift.provider_id,
            patient_id=shift.patient_id,
            scheduled_at=shift.scheduled_at,
            duration_minutes=shift.duration_minutes,
            status=shift.status.value,
            assigned_staff_id=shift.assigned_staff_id,
            status_reason=shift.status_reason,
            pool_staff_ids=list(shift.pool_staff_ids),
            vacated_by=shift.vacated_by,
            patient_first_name=shift.patient_first_name,
            patient_last_name=shift.patient_last_name,
            suburb=shift.suburb,
        )


class StaffModel(Base, TimestampMixin):
    """Staff member of a provider."""

    __tablename__ = "staff"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    phone: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        index=True,
        comment="Phone number in E.164 format",
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def to_domain(self) -> StaffMember:
        return StaffMember(
            id=self.id,
            provider_id=self.provider_id,
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
            active=self.active,
        )

    @classmethod
    def from_domain(cls, member: StaffMember) -> "StaffModel":
        return cls(
            id=member.id,
            provider_id=member.provider_id,
            first_name=member.first_name,
            last_name=member.last_name,
            phone=member.phone,
            active=member.active,
        )


class ProviderPolicyModel(Base, TimestampMixin):
    """Per-provider escalation overrides. NULL columns use service defaults."""

    __tablename__ = "provider_policies"

    provider_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    outbound_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    max_rounds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    inter_call_delay_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    inter_round_delay_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    wait_minutes_after_waves: Mapped[int | None] = mapped_column(Integer, nullable=True)
    call_message_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    privacy_mode: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    def to_domain(self) -> ProviderPolicy:
        return ProviderPolicy(
            provider_id=self.provider_id,
            outbound_enabled=self.outbound_enabled,
            max_rounds=self.max_rounds,
            inter_call_delay_seconds=self.inter_call_delay_seconds,
            inter_round_delay_seconds=self.inter_round_delay_seconds,
            wait_minutes_after_waves=self.wait_minutes_after_waves,
            call_message_template=self.call_message_template,
            privacy_mode=self.privacy_mode,
        )


class CallAttemptModel(Base, UUIDMixin):
    """Append-only audit record of one outbound dial."""

    __tablename__ = "call_attempts"

    shift_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    round: Mapped[int] = mapped_column(Integer, nullable=False)
    staff_index: Mapped[int] = mapped_column(Integer, nullable=False)
    staff_id: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="accepted, declined, no_answer, busy, failed",
    )
    call_id: Mapped[str] = mapped_column(String(160), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def to_domain(self) -> CallAttempt:
        return CallAttempt(
            shift_id=self.shift_id,
            round=self.round,
            staff_index=self.staff_index,
            staff_id=self.staff_id,
            outcome=CallOutcome(self.outcome),
            call_id=self.call_id,
            attempted_at=self.attempted_at,
            error=self.error,
        )


class NotificationModel(Base, UUIDMixin):
    """Append-only audit record of one wave SMS."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_staff_sent", "staff_id", "sent_at"),
    )

    shift_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    staff_id: Mapped[str] = mapped_column(String(64), nullable=False)
    wave: Mapped[int] = mapped_column(Integer, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def to_domain(self) -> Notification:
        return Notification(
            shift_id=self.shift_id,
            staff_id=self.staff_id,
            wave=self.wave,
            sent_at=self.sent_at,
            success=self.success,
        )


class WorkItemState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class WorkItemModel(Base):
    """Durable escalation step; the key column enforces one row per step."""

    __tablename__ = "work_items"
    __table_args__ = (
        Index("ix_work_items_due", "state", "fire_at", "priority"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    shift_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    wave: Mapped[int | None] = mapped_column(Integer, nullable=True)
    round: Mapped[int | None] = mapped_column(Integer, nullable=True)
    staff_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    fire_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, comment="UTC")
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_attempt: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    state: Mapped[str] = mapped_column(
        String(20),
        default=WorkItemState.PENDING.value,
        nullable=False,
        comment="pending, running, completed",
    )
    claimed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def to_domain(self) -> WorkItem:
        return WorkItem(
            fire_at=self.fire_at,
            priority=self.priority,
            sequence=self.id,
            shift_id=self.shift_id,
            kind=WorkItemKind(self.kind),
            wave=self.wave,
            round=self.round,
            staff_index=self.staff_index,
            payload=dict(self.payload or {}),
            delivery_attempt=self.delivery_attempt,
            created_at=self.created_at,
        )

    @classmethod
    def from_domain(
        cls,
        item: WorkItem,
        state: WorkItemState = WorkItemState.PENDING,
        claimed_by: str | None = None,
        claimed_at: datetime | None = None,
    ) -> "WorkItemModel":
        return cls(
            key=item.key,
            shift_id=item.shift_id,
            kind=item.kind.value,
            wave=item.wave,
            round=item.round,
            staff_index=item.staff_index,
            payload=dict(item.payload),
            fire_at=item.fire_at,
            priority=int(item.priority),
            delivery_attempt=item.delivery_attempt,
            state=state.value,
            claimed_by=claimed_by,
            claimed_at=claimed_at,
            created_at=item.created_at,
        )


class ClosedShiftModel(Base):
    """Shift whose escalation was stopped; the queue refuses its items."""

    __tablename__ = "work_queue_closed_shifts"

    shift_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    closed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
