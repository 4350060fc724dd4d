"""SMS wave scheduling.

Three waves per escalation cycle. Wave 1 runs immediately, wave 2 one
interval later and wave 3 one interval after that; the interval is
fixed when the cycle starts and carried in the work item payload.
After wave 3 the outbound calling round-robin takes over, unless the
provider disabled it.
"""
from __future__ import annotations

from datetime import timedelta

from shift_escalation.config import EscalationSettings
from shift_escalation.core.logging import get_logger, mask_phone
from shift_escalation.escalation.calls import OutboundCallScheduler
from shift_escalation.escalation.guard import StateGuard
from shift_escalation.escalation.intervals import calculate_wave_interval
from shift_escalation.escalation.notifier import Notifier
from shift_escalation.escalation.policy import PolicyResolver
from shift_escalation.escalation.pool import StaffPoolResolver
from shift_escalation.escalation.queue import WorkItem, WorkQueue
from shift_escalation.escalation.templates import render_wave_sms
from shift_escalation.models import Notification, Shift, StaffMember
from shift_escalation.store.base import ShiftStore

log = get_logger(__name__)

TOTAL_WAVES = 3

REASON_NO_POOL = "no staff pool configured"
REASON_OUTBOUND_DISABLED = "outbound calling disabled after SMS waves"


class WaveScheduler:
    """Sends the SMS waves of an escalation cycle."""

    def __init__(
        self,
        store: ShiftStore,
        queue: WorkQueue,
        resolver: StaffPoolResolver,
        guard: StateGuard,
        notifier: Notifier,
        policies: PolicyResolver,
        calls: OutboundCallScheduler,
        settings: EscalationSettings,
    ) -> None:
        self._store = store
        self._queue = queue
        self._resolver = resolver
        self._guard = guard
        self._notifier = notifier
        self._policies = policies
        self._calls = calls
        self._settings = settings

    def wave_interval(self, shift: Shift) -> int:
        """Minutes between waves for this shift."""
        if self._settings.wave_interval_minutes:
            return self._settings.wave_interval_minutes
        return calculate_wave_interval(
            shift.scheduled_at, self._queue.now(), tz=self._settings.timezone
        )

    def accept_url(self, shift: Shift) -> str:
        return self._settings.accept_url_template.format(shift_id=shift.id)

    async def start(self, shift: Shift) -> bool:
        """Queue wave 1 for immediate execution."""
        interval = self.wave_interval(shift)
        scheduled = await self._queue.schedule(
            WorkItem.sms_wave(
                shift.id,
                1,
                fire_at=self._queue.now(),
                payload={"interval_minutes": interval},
            )
        )
        if scheduled:
            log.info("Escalation started", shift_id=shift.id, interval_minutes=interval)
        return scheduled

    async def handle_wave(self, item: WorkItem) -> None:
        wave = item.wave or 1

        shift = await self._guard.check(item.shift_id, step=item.key)
        if shift is None:
            return

        pool = await self._resolver.resolve(shift)
        if wave == 1 and not pool:
            log.info("No staff pool, escalation skipped", shift_id=shift.id)
            await self._store.set_status_reason(shift.id, REASON_NO_POOL)
            return

        sent = await self._send_wave(shift, wave, pool, reference=item.key)
        log.info(
            "SMS wave sent",
            shift_id=shift.id,
            wave=wave,
            recipients=len(pool),
            delivered=sent,
        )

        if wave < TOTAL_WAVES:
            interval = item.payload.get("interval_minutes") or self.wave_interval(shift)
            await self._queue.schedule(
                WorkItem.sms_wave(
                    shift.id,
                    wave + 1,
                    fire_at=self._queue.now() + timedelta(minutes=interval),
                    payload={"interval_minutes": interval},
                )
            )
            return

        policy = await self._policies.resolve(shift.provider_id)
        if not policy.outbound_enabled:
            log.info(
                "Outbound calling disabled, shift left open for manual handling",
                shift_id=shift.id,
                provider_id=shift.provider_id,
            )
            await self._store.set_status_reason(shift.id, REASON_OUTBOUND_DISABLED)
            return

        await self._calls.schedule_first(shift, policy)

    async def _send_wave(
        self, shift: Shift, wave: int, pool: list[StaffMember], reference: str
    ) -> int:
        body = render_wave_sms(shift, wave, self.accept_url(shift))
        delivered = 0

        for member in pool:
            if not member.phone:
                log.info("Staff member has no phone, SMS skipped", shift_id=shift.id, staff_id=member.id)
                continue

            success = await self._notifier.send_sms(member.phone, body, reference=reference)
            await self._store.record_notification(
                Notification(shift_id=shift.id, staff_id=member.id, wave=wave, success=success)
            )
            if success:
                delivered += 1
            else:
                log.info(
                    "Wave SMS not delivered",
                    shift_id=shift.id,
                    wave=wave,
                    to=mask_phone(member.phone),
                )

        return delivered
