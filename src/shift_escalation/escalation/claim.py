"""Claim and cancellation.

``ClaimService.claim`` is the only way any channel marks a shift filled.
The store's compare-and-set decides the single winner; the winner then
drops every pending escalation step of the shift. Steps already running
are stopped by the state guard.
"""
from __future__ import annotations

from shift_escalation.core.exceptions import StaffNotFoundError
from shift_escalation.core.logging import get_logger
from shift_escalation.escalation.notifier import Notifier
from shift_escalation.escalation.queue import WorkQueue
from shift_escalation.escalation.templates import (
    NO_LONGER_AVAILABLE,
    render_confirmation_sms,
)
from shift_escalation.models import ClaimChannel, ClaimResult, Shift, ShiftStatus, StaffMember
from shift_escalation.store.base import ShiftStore

log = get_logger(__name__)


class CancellationService:
    """Removes all pending escalation steps of a shift."""

    def __init__(self, queue: WorkQueue) -> None:
        self._queue = queue

    async def cancel(self, shift_id: str) -> int:
        removed = await self._queue.remove_for_shift(shift_id)
        log.info("Escalation cancelled", shift_id=shift_id, removed=removed)
        return removed


class ClaimService:
    """Assigns a shift to the first staff member who accepts it."""

    def __init__(
        self,
        store: ShiftStore,
        cancellation: CancellationService,
        notifier: Notifier | None = None,
    ) -> None:
        self._store = store
        self._cancellation = cancellation
        self._notifier = notifier

    async def claim(
        self,
        shift_id: str,
        staff_id: str,
        channel: ClaimChannel = ClaimChannel.WEB,
    ) -> ClaimResult:
        """Claim a shift for a staff member.

        Losing callers get ``accepted=False`` with the "no longer
        available" reason and must not retry. A repeated claim by the
        current assignee succeeds without side effects.

        Raises:
            ShiftNotFoundError: Unknown shift
            StaffNotFoundError: Claimant is unknown, inactive or works for
                another provider
        """
        shift = await self._store.get_shift(shift_id)
        staff = await self._eligible_staff(shift, staff_id)

        won = await self._store.compare_and_set_status(
            shift_id,
            expected=ShiftStatus.OPEN,
            new_status=ShiftStatus.SCHEDULED,
            assigned_staff_id=staff_id,
        )

        if not won:
            shift = await self._store.get_shift(shift_id)
            if shift.status == ShiftStatus.SCHEDULED and shift.assigned_staff_id == staff_id:
                log.info("Shift already assigned to claimant", shift_id=shift_id, staff_id=staff_id)
                return ClaimResult(
                    accepted=True,
                    shift_id=shift_id,
                    staff_id=staff_id,
                    reason="already_assigned",
                )

            log.info(
                "Claim lost",
                shift_id=shift_id,
                staff_id=staff_id,
                channel=channel.value,
                status=shift.status.value,
            )
            return ClaimResult(
                accepted=False,
                shift_id=shift_id,
                staff_id=staff_id,
                reason=NO_LONGER_AVAILABLE,
            )

        removed = await self._cancellation.cancel(shift_id)
        log.info(
            "Shift claimed",
            shift_id=shift_id,
            staff_id=staff_id,
            channel=channel.value,
            cancelled_items=removed,
        )

        # SMS claims get the confirmation as the reply to their text
        if channel != ClaimChannel.SMS:
            await self._send_confirmation(shift, staff)

        return ClaimResult(
            accepted=True,
            shift_id=shift_id,
            staff_id=staff_id,
            cancelled_items=removed,
        )

    async def _eligible_staff(self, shift: Shift, staff_id: str) -> StaffMember:
        staff = await self._store.get_staff(staff_id)
        if staff is None or not staff.active or staff.provider_id != shift.provider_id:
            log.warning("Claim by ineligible staff refused", shift_id=shift.id, staff_id=staff_id)
            raise StaffNotFoundError(
                f"Staff member {staff_id} cannot claim shift {shift.id}",
                details={"shift_id": shift.id, "staff_id": staff_id},
            )
        return staff

    async def _send_confirmation(self, shift: Shift, staff: StaffMember) -> None:
        if self._notifier is None:
            return
        if not staff.phone:
            log.info("No phone for confirmation SMS", shift_id=shift.id, staff_id=staff.id)
            return

        await self._notifier.send_sms(
            staff.phone,
            render_confirmation_sms(shift),
            reference=f"confirm-{shift.id}",
        )
