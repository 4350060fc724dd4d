"""State guard run before every scheduled step."""
from __future__ import annotations

from shift_escalation.core.exceptions import ShiftNotFoundError
from shift_escalation.core.logging import get_logger
from shift_escalation.models import Shift
from shift_escalation.store.base import ShiftStore

log = get_logger(__name__)


class StateGuard:
    """Re-reads a shift and lets a step proceed only while it is Open.

    Store outages are not treated as "closed": the StoreError propagates
    so the work queue re-delivers the step later.
    """

    def __init__(self, store: ShiftStore) -> None:
        self._store = store

    async def check(self, shift_id: str, step: str = "") -> Shift | None:
        """Return the fresh shift if it is still open, else None."""
        try:
            shift = await self._store.get_shift(shift_id)
        except ShiftNotFoundError:
            log.warning("Shift not found, step aborted", shift_id=shift_id, step=step)
            return None

        if not shift.is_open:
            log.info(
                "Shift no longer open, step aborted",
                shift_id=shift_id,
                step=step,
                status=shift.status.value,
            )
            return None

        return shift
