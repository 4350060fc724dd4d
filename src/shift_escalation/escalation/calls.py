"""Outbound call round-robin.

One work item places one call. Each item carries the round (1-based),
the staff index (0-based) into the freshly resolved pool, and the
per-staff attempt counts for reporting. After the call the handler
schedules exactly one successor: the next staff member, the first
staff member of the next round, or nothing once the shift is claimed
or every round is spent.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from shift_escalation.core.exceptions import StaffNotFoundError
from shift_escalation.core.logging import get_logger
from shift_escalation.escalation.claim import ClaimService
from shift_escalation.escalation.guard import StateGuard
from shift_escalation.escalation.notifier import Notifier
from shift_escalation.escalation.policy import EffectivePolicy, PolicyResolver
from shift_escalation.escalation.pool import StaffPoolResolver
from shift_escalation.escalation.queue import WorkItem, WorkQueue
from shift_escalation.escalation.templates import render_call_message
from shift_escalation.integrations.voice.base import CallRequest
from shift_escalation.models import (
    CallAttempt,
    CallOutcome,
    ClaimChannel,
    Shift,
    ShiftStatus,
    StaffMember,
)
from shift_escalation.store.base import ShiftStore

log = get_logger(__name__)


def call_id_for(shift_id: str, round_number: int, staff_index: int) -> str:
    return f"{shift_id}-r{round_number}-s{staff_index}"


def unfilled_reason(max_rounds: int, attempts_by_staff: dict[str, int]) -> str:
    total = sum(attempts_by_staff.values())
    return (
        f"No response after {max_rounds} rounds of calling "
        f"({total} total calls to {len(attempts_by_staff)} staff members)."
    )


class OutboundCallScheduler:
    """Dials staff one at a time, round after round."""

    def __init__(
        self,
        store: ShiftStore,
        queue: WorkQueue,
        resolver: StaffPoolResolver,
        guard: StateGuard,
        notifier: Notifier,
        policies: PolicyResolver,
        claims: ClaimService,
    ) -> None:
        self._store = store
        self._queue = queue
        self._resolver = resolver
        self._guard = guard
        self._notifier = notifier
        self._policies = policies
        self._claims = claims

    async def schedule_first(self, shift: Shift, policy: EffectivePolicy) -> bool:
        """Queue round 1, staff 0 after the post-wave wait."""
        fire_at = self._queue.now() + timedelta(minutes=policy.wait_minutes_after_waves)
        scheduled = await self._schedule(shift.id, 1, 0, fire_at, {})
        if scheduled:
            log.info(
                "Outbound calling scheduled",
                shift_id=shift.id,
                wait_minutes=policy.wait_minutes_after_waves,
                max_rounds=policy.max_rounds,
            )
        return scheduled

    async def handle_call(self, item: WorkItem) -> None:
        round_number = item.round or 1
        staff_index = item.staff_index or 0
        attempts_by_staff: dict[str, int] = dict(item.payload.get("attempts_by_staff", {}))

        shift = await self._guard.check(item.shift_id, step=item.key)
        if shift is None:
            return

        pool = await self._resolver.resolve(shift)
        if not pool:
            log.info("Staff pool empty, calling stopped", shift_id=shift.id, round=round_number)
            return

        policy = await self._policies.resolve(shift.provider_id)

        if staff_index >= len(pool):
            # Pool shrank since the previous call
            await self._advance(shift, len(pool), round_number, staff_index, attempts_by_staff, policy)
            return

        member = pool[staff_index]
        if not member.phone:
            log.warning(
                "Staff member has no phone, skipped",
                shift_id=shift.id,
                staff_id=member.id,
                round=round_number,
                staff_index=staff_index,
            )
            await self._advance(
                shift, len(pool), round_number, staff_index + 1, attempts_by_staff, policy,
                call_delay=0.0,
            )
            return

        outcome = await self._call(shift, member, round_number, staff_index, policy)
        attempts_by_staff[member.id] = attempts_by_staff.get(member.id, 0) + 1

        if outcome == CallOutcome.ACCEPTED:
            try:
                result = await self._claims.claim(shift.id, member.id, channel=ClaimChannel.VOICE)
            except StaffNotFoundError:
                # Deactivated while on the call; keep working through the pool
                log.info("Accepting staff member no longer eligible", shift_id=shift.id, staff_id=member.id)
            else:
                if not result.accepted:
                    log.info("Accepted call lost the claim", shift_id=shift.id, staff_id=member.id)
                return

        await self._advance(
            shift, len(pool), round_number, staff_index + 1, attempts_by_staff, policy
        )

    async def _call(
        self,
        shift: Shift,
        member: StaffMember,
        round_number: int,
        staff_index: int,
        policy: EffectivePolicy,
    ) -> CallOutcome:
        message, errors = render_call_message(
            shift, member, policy.call_message_template, policy.privacy_mode
        )
        if errors:
            log.warning(
                "Invalid call template, using default",
                provider_id=shift.provider_id,
                errors=errors,
            )

        call_id = call_id_for(shift.id, round_number, staff_index)
        request = CallRequest(
            call_id=call_id,
            to=member.phone or "",
            message=message,
            shift_id=shift.id,
            staff_id=member.id,
            round=round_number,
        )

        log.info(
            "Placing outbound call",
            shift_id=shift.id,
            call_id=call_id,
            round=round_number,
            staff_index=staff_index,
            staff_id=member.id,
        )
        outcome, error = await self._notifier.place_call(request)

        await self._store.record_call_attempt(
            CallAttempt(
                shift_id=shift.id,
                round=round_number,
                staff_id=member.id,
                outcome=outcome,
                call_id=call_id,
                staff_index=staff_index,
                error=error,
            )
        )
        log.info("Call attempt recorded", call_id=call_id, outcome=outcome.value)
        return outcome

    async def _advance(
        self,
        shift: Shift,
        pool_size: int,
        round_number: int,
        next_index: int,
        attempts_by_staff: dict[str, int],
        policy: EffectivePolicy,
        call_delay: float | None = None,
    ) -> None:
        now = self._queue.now()

        if next_index < pool_size:
            delay = policy.inter_call_delay_seconds if call_delay is None else call_delay
            await self._schedule(
                shift.id, round_number, next_index, now + timedelta(seconds=delay), attempts_by_staff
            )
            return

        if round_number < policy.max_rounds:
            log.info(
                "Round complete, next round scheduled",
                shift_id=shift.id,
                round=round_number,
                delay=policy.inter_round_delay_seconds,
            )
            await self._schedule(
                shift.id,
                round_number + 1,
                0,
                now + timedelta(seconds=policy.inter_round_delay_seconds),
                attempts_by_staff,
            )
            return

        await self._mark_unfilled(shift, policy, attempts_by_staff)

    async def _schedule(
        self,
        shift_id: str,
        round_number: int,
        staff_index: int,
        fire_at: datetime,
        attempts_by_staff: dict[str, int],
    ) -> bool:
        payload: dict[str, Any] = {
            "round": round_number,
            "staff_index": staff_index,
            "attempts_by_staff": dict(attempts_by_staff),
        }
        return await self._queue.schedule(
            WorkItem.outbound_call(shift_id, round_number, staff_index, fire_at, payload)
        )

    async def _mark_unfilled(
        self,
        shift: Shift,
        policy: EffectivePolicy,
        attempts_by_staff: dict[str, int],
    ) -> None:
        reason = unfilled_reason(policy.max_rounds, attempts_by_staff)
        changed = await self._store.compare_and_set_status(
            shift.id,
            expected=ShiftStatus.OPEN,
            new_status=ShiftStatus.UNFILLED_AFTER_ESCALATION,
            reason=reason,
        )
        if not changed:
            log.info("Shift left Open before exhaustion was recorded", shift_id=shift.id)
            return

        await self._queue.remove_for_shift(shift.id)
        log.warning(
            "Shift unfilled after escalation",
            shift_id=shift.id,
            reason=reason,
            total_calls=sum(attempts_by_staff.values()),
        )
