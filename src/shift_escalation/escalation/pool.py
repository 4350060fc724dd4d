"""Staff pool resolution.

The pool is the patient's designated staff list filtered down to the
provider's active staff. An empty designated pool resolves to nobody:
it never widens to "all staff of the provider".
"""
from __future__ import annotations

from shift_escalation.core.logging import get_logger
from shift_escalation.models import Shift, StaffMember
from shift_escalation.store.base import ShiftStore

log = get_logger(__name__)


class StaffPoolResolver:
    """Resolves the ordered, eligible staff for a shift.

    Resolution is a pure read and is repeated at every wave and every
    call so pool edits between steps take effect immediately.
    """

    def __init__(self, store: ShiftStore) -> None:
        self._store = store

    async def resolve(self, shift: Shift) -> list[StaffMember]:
        """Eligible staff in pool order.

        Drops staff who are inactive or belong to another provider,
        duplicate entries, and the staff member who vacated the shift.
        """
        if not shift.pool_staff_ids:
            log.info("Shift has no staff pool", shift_id=shift.id)
            return []

        active = {
            member.id: member
            for member in await self._store.list_active_staff(shift.provider_id)
        }

        resolved: list[StaffMember] = []
        seen: set[str] = set()
        for staff_id in shift.pool_staff_ids:
            if staff_id in seen:
                continue
            seen.add(staff_id)

            if staff_id == shift.vacated_by:
                continue

            member = active.get(staff_id)
            if member is None:
                log.debug("Pool member not active", shift_id=shift.id, staff_id=staff_id)
                continue
            resolved.append(member)

        log.info(
            "Staff pool resolved",
            shift_id=shift.id,
            configured=len(shift.pool_staff_ids),
            eligible=len(resolved),
        )
        return resolved

    async def resolve_ids(self, shift_id: str) -> list[str]:
        """Ordered staff ids for a shift id."""
        shift = await self._store.get_shift(shift_id)
        return [member.id for member in await self.resolve(shift)]
