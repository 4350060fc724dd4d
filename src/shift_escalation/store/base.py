"""Shift record store interface.

The escalation core reads shift and staff records and writes exactly one
piece of shared mutable state: the shift status, always through
``compare_and_set_status``. Call attempts and notifications are
append-only audit records.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from shift_escalation.models import (
    CallAttempt,
    Notification,
    ProviderPolicy,
    Shift,
    ShiftStatus,
    StaffMember,
)


class ShiftStore(ABC):
    """Abstract record store used by the escalation core."""

    @abstractmethod
    async def get_shift(self, shift_id: str) -> Shift:
        """Load a shift.

        Raises:
            ShiftNotFoundError: If the shift does not exist
        """

    @abstractmethod
    async def compare_and_set_status(
        self,
        shift_id: str,
        expected: ShiftStatus,
        new_status: ShiftStatus,
        assigned_staff_id: str | None = None,
        reason: str | None = None,
    ) -> bool:
        """Atomically move a shift from ``expected`` to ``new_status``.

        Returns:
            True if this call performed the transition
        """

    @abstractmethod
    async def set_status_reason(
        self,
        shift_id: str,
        reason: str,
        expected: ShiftStatus = ShiftStatus.OPEN,
    ) -> bool:
        """Record why a shift needs attention without changing its status.

        Returns:
            False if the shift is no longer in ``expected``
        """

    @abstractmethod
    async def list_active_staff(self, provider_id: str) -> list[StaffMember]:
        """Active staff of a provider."""

    @abstractmethod
    async def get_staff(self, staff_id: str) -> StaffMember | None:
        """Load one staff member."""

    @abstractmethod
    async def find_staff_by_phone(self, phone: str) -> StaffMember | None:
        """Find a staff member by phone number (E.164)."""

    @abstractmethod
    async def get_provider_policy(self, provider_id: str) -> ProviderPolicy:
        """Escalation overrides of a provider (empty policy if none)."""

    @abstractmethod
    async def record_call_attempt(self, attempt: CallAttempt) -> None:
        """Append a call attempt audit record."""

    @abstractmethod
    async def list_call_attempts(self, shift_id: str) -> list[CallAttempt]:
        """Call attempts of a shift in the order they were made."""

    @abstractmethod
    async def record_notification(self, notification: Notification) -> None:
        """Append a wave SMS audit record."""

    @abstractmethod
    async def latest_offer_for_staff(self, staff_id: str) -> str | None:
        """Shift a bare "YES" from this staff member refers to.

        The most recent still-open shift they were texted about, else the
        most recent shift they were texted about at all (so a late reply
        can be told the job is gone). None if they were never texted.
        """

    async def close(self) -> None:
        """Release resources."""

    async def ping(self) -> bool:
        """Cheap connectivity check for health reporting."""
        return True
