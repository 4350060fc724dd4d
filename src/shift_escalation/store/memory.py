"""In-memory shift store for development and testing."""
from __future__ import annotations

import asyncio
from dataclasses import replace

from shift_escalation.core.exceptions import ShiftNotFoundError
from shift_escalation.core.logging import get_logger
from shift_escalation.models import (
    CallAttempt,
    Notification,
    ProviderPolicy,
    Shift,
    ShiftStatus,
    StaffMember,
)
from shift_escalation.store.base import ShiftStore
from shift_escalation.phone import normalize_phone

log = get_logger(__name__)


class MemoryShiftStore(ShiftStore):
    """Dictionary-backed store.

    Status transitions run under a lock so concurrent claims resolve to
    exactly one winner. Reads return copies so callers cannot mutate
    stored records.
    """

    def __init__(self) -> None:
        self._shifts: dict[str, Shift] = {}
        self._staff: dict[str, StaffMember] = {}
        self._policies: dict[str, ProviderPolicy] = {}
        self._attempts: list[CallAttempt] = []
        self._notifications: list[Notification] = []
        self._lock = asyncio.Lock()

    # ========== Seeding ==========

    def add_shift(self, shift: Shift) -> Shift:
        self._shifts[shift.id] = replace(shift, pool_staff_ids=list(shift.pool_staff_ids))
        return shift

    def add_staff(self, *staff: StaffMember) -> None:
        for member in staff:
            self._staff[member.id] = replace(member)

    def set_policy(self, policy: ProviderPolicy) -> None:
        self._policies[policy.provider_id] = policy

    def update_shift(self, shift_id: str, **changes) -> None:
        """Edit a stored shift outside the escalation core (tests, admin)."""
        self._shifts[shift_id] = replace(self._shifts[shift_id], **changes)

    def update_staff(self, staff_id: str, **changes) -> None:
        self._staff[staff_id] = replace(self._staff[staff_id], **changes)

    # ========== ShiftStore ==========

    async def get_shift(self, shift_id: str) -> Shift:
        shift = self._shifts.get(shift_id)
        if shift is None:
            raise ShiftNotFoundError(
                f"Shift {shift_id} not found",
                details={"shift_id": shift_id},
            )
        return replace(shift, pool_staff_ids=list(shift.pool_staff_ids))

    async def compare_and_set_status(
        self,
        shift_id: str,
        expected: ShiftStatus,
        new_status: ShiftStatus,
        assigned_staff_id: str | None = None,
        reason: str | None = None,
    ) -> bool:
        async with self._lock:
            shift = self._shifts.get(shift_id)
            if shift is None:
                raise ShiftNotFoundError(
                    f"Shift {shift_id} not found",
                    details={"shift_id": shift_id},
                )
            if shift.status != expected:
                return False

            self._shifts[shift_id] = replace(
                shift,
                status=new_status,
                assigned_staff_id=assigned_staff_id,
                status_reason=reason,
            )

        log.info(
            "Shift status changed",
            shift_id=shift_id,
            from_status=expected.value,
            to_status=new_status.value,
            assigned_staff_id=assigned_staff_id,
        )
        return True

    async def set_status_reason(
        self,
        shift_id: str,
        reason: str,
        expected: ShiftStatus = ShiftStatus.OPEN,
    ) -> bool:
        async with self._lock:
            shift = self._shifts.get(shift_id)
            if shift is None:
                raise ShiftNotFoundError(
                    f"Shift {shift_id} not found",
                    details={"shift_id": shift_id},
                )
            if shift.status != expected:
                return False
            self._shifts[shift_id] = replace(shift, status_reason=reason)

        log.info("Shift status reason recorded", shift_id=shift_id, reason=reason)
        return True

    async def list_active_staff(self, provider_id: str) -> list[StaffMember]:
        return [
            replace(member)
            for member in self._staff.values()
            if member.provider_id == provider_id and member.active
        ]

    async def get_staff(self, staff_id: str) -> StaffMember | None:
        member = self._staff.get(staff_id)
        return replace(member) if member else None

    async def find_staff_by_phone(self, phone: str) -> StaffMember | None:
        wanted = normalize_phone(phone)
        for member in self._staff.values():
            if member.phone and normalize_phone(member.phone) == wanted:
                return replace(member)
        return None

    async def get_provider_policy(self, provider_id: str) -> ProviderPolicy:
        return self._policies.get(provider_id) or ProviderPolicy(provider_id=provider_id)

    async def record_call_attempt(self, attempt: CallAttempt) -> None:
        self._attempts.append(attempt)

    async def list_call_attempts(self, shift_id: str) -> list[CallAttempt]:
        return [a for a in self._attempts if a.shift_id == shift_id]

    async def record_notification(self, notification: Notification) -> None:
        self._notifications.append(notification)

    async def latest_offer_for_staff(self, staff_id: str) -> str | None:
        for notification in reversed(self._notifications):
            if notification.staff_id != staff_id or not notification.success:
                continue
            shift = self._shifts.get(notification.shift_id)
            if shift is not None and shift.status == ShiftStatus.OPEN:
                return shift.id
        for notification in reversed(self._notifications):
            if notification.staff_id == staff_id and notification.success:
                return notification.shift_id
        return None

    def list_notifications(self, shift_id: str) -> list[Notification]:
        return [n for n in self._notifications if n.shift_id == shift_id]
