"""End-to-end escalation scenarios on the in-memory store."""

from __future__ import annotations

import pytest

from conftest import PROVIDER_ID, SHIFT_ID, make_shift, make_staff, phone_for
from shift_escalation.api.sms_webhooks import handle_inbound_sms
from shift_escalation.core.exceptions import ShiftNotFoundError, StoreError
from shift_escalation.escalation.orchestrator import EscalationOrchestrator
from shift_escalation.escalation.queue import WorkItem
from shift_escalation.escalation.templates import NO_LONGER_AVAILABLE
from shift_escalation.models import CallOutcome, ProviderPolicy, ShiftStatus
from shift_escalation.store.memory import MemoryShiftStore


class FlakyStore(MemoryShiftStore):
    """Fails shift reads a given number of times."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 0

    async def get_shift(self, shift_id):
        if self.failures > 0:
            self.failures -= 1
            raise StoreError("connection reset")
        return await super().get_shift(shift_id)


class TestScenarios:
    """Complete escalation cycles."""

    @pytest.mark.asyncio
    async def test_sms_accept_after_first_wave(self, orchestrator, queue, store, sms, voice):
        await orchestrator.start_escalation(SHIFT_ID)
        await queue.run_next()

        reply = await handle_inbound_sms(orchestrator, phone_for(2), "YES")

        assert reply.startswith("JOB ASSIGNED")
        shift = await store.get_shift(SHIFT_ID)
        assert shift.status == ShiftStatus.SCHEDULED
        assert shift.assigned_staff_id == "staff-2"
        assert await queue.pending_for_shift(SHIFT_ID) == []

        await queue.drain()
        assert voice.placed_calls == []
        assert len(sms.get_sent_messages()) == 3

    @pytest.mark.asyncio
    async def test_late_sms_accept_is_told_job_is_gone(self, orchestrator, queue):
        await orchestrator.start_escalation(SHIFT_ID)
        await queue.run_next()
        await handle_inbound_sms(orchestrator, phone_for(2), "yes please")

        reply = await handle_inbound_sms(orchestrator, phone_for(1), "Yes!")

        assert reply == NO_LONGER_AVAILABLE

    @pytest.mark.asyncio
    async def test_second_staff_accepts_by_phone(self, orchestrator, queue, store, sms, voice):
        voice.script(phone_for(2), CallOutcome.ACCEPTED)

        await orchestrator.start_escalation(SHIFT_ID)
        await queue.drain()

        shift = await store.get_shift(SHIFT_ID)
        assert shift.status == ShiftStatus.SCHEDULED
        assert shift.assigned_staff_id == "staff-2"
        assert len(store.list_notifications(SHIFT_ID)) == 9
        assert [c.call_id for c in voice.placed_calls] == ["shift-1-r1-s0", "shift-1-r1-s1"]

        attempts = await store.list_call_attempts(SHIFT_ID)
        assert [a.outcome for a in attempts] == [CallOutcome.NO_ANSWER, CallOutcome.ACCEPTED]
        assert sms.messages_to(phone_for(2))[-1].startswith("JOB ASSIGNED")

    @pytest.mark.asyncio
    async def test_nobody_answers(self, orchestrator, queue, store, voice):
        await orchestrator.start_escalation(SHIFT_ID)
        await queue.drain()

        shift = await store.get_shift(SHIFT_ID)
        assert shift.status == ShiftStatus.UNFILLED_AFTER_ESCALATION
        assert shift.assigned_staff_id is None
        assert "9 total calls to 3 staff members" in shift.status_reason
        assert len(voice.placed_calls) == 9
        assert queue.pending_count == 0

    @pytest.mark.asyncio
    async def test_decliner_accepts_in_second_round(self, orchestrator, queue, store, voice):
        store.update_shift(SHIFT_ID, pool_staff_ids=["staff-1", "staff-2"])
        store.set_policy(ProviderPolicy(provider_id=PROVIDER_ID, max_rounds=2))
        voice.script(phone_for(1), CallOutcome.DECLINED, CallOutcome.ACCEPTED)

        await orchestrator.start_escalation(SHIFT_ID)
        await queue.drain()

        shift = await store.get_shift(SHIFT_ID)
        assert shift.status == ShiftStatus.SCHEDULED
        assert shift.assigned_staff_id == "staff-1"
        assert [c.call_id for c in voice.placed_calls] == [
            "shift-1-r1-s0",
            "shift-1-r1-s1",
            "shift-1-r2-s0",
        ]

    @pytest.mark.asyncio
    async def test_late_claim_after_unfilled(self, orchestrator, queue):
        await orchestrator.start_escalation(SHIFT_ID)
        await queue.drain()

        result = await orchestrator.claim(SHIFT_ID, "staff-1")

        assert not result.accepted


class TestOrchestrator:
    """Starting, status and delivery guarantees."""

    @pytest.mark.asyncio
    async def test_start_twice(self, orchestrator, queue):
        assert await orchestrator.start_escalation(SHIFT_ID)
        assert not await orchestrator.start_escalation(SHIFT_ID)

        assert queue.pending_count == 1

    @pytest.mark.asyncio
    async def test_start_closed_shift(self, orchestrator, store):
        store.update_shift(SHIFT_ID, status=ShiftStatus.SCHEDULED)

        assert not await orchestrator.start_escalation(SHIFT_ID)

    @pytest.mark.asyncio
    async def test_start_unknown_shift(self, orchestrator):
        with pytest.raises(ShiftNotFoundError):
            await orchestrator.start_escalation("missing")

    @pytest.mark.asyncio
    async def test_restart_after_cancel(self, orchestrator, queue, sms):
        await orchestrator.start_escalation(SHIFT_ID)
        await queue.run_next()
        await orchestrator.cancel_escalation(SHIFT_ID)

        assert await orchestrator.start_escalation(SHIFT_ID)
        await queue.run_next()

        assert len(sms.messages_to(phone_for(1))) == 2

    @pytest.mark.asyncio
    async def test_duplicate_delivery_sends_once(self, orchestrator, queue, sms, clock):
        item = WorkItem.sms_wave(SHIFT_ID, 1, clock.now(), payload={"interval_minutes": 30})

        assert await queue.deliver(item)
        assert not await queue.deliver(item)

        assert len(sms.get_sent_messages()) == 3

    @pytest.mark.asyncio
    async def test_store_error_is_redelivered(self, queue, sms, voice, settings):
        store = FlakyStore()
        store.add_staff(make_staff(1), make_staff(2), make_staff(3))
        store.add_shift(make_shift())
        orchestrator = EscalationOrchestrator(store, queue, sms, voice, settings)
        await orchestrator.start_escalation(SHIFT_ID)

        store.failures = 1
        await queue.run_next()
        assert sms.get_sent_messages() == []

        await queue.run_next()

        assert len(sms.get_sent_messages()) == 3
        assert queue.stats.redelivered == 1

    @pytest.mark.asyncio
    async def test_status(self, orchestrator, queue):
        await orchestrator.start_escalation(SHIFT_ID)

        status = await orchestrator.get_status(SHIFT_ID)

        assert status["shift"]["status"] == "open"
        assert status["resolved_pool"] == ["staff-1", "staff-2", "staff-3"]
        assert [item["key"] for item in status["pending_items"]] == ["wave-1-shift-1"]
        assert status["call_attempts"] == []

    @pytest.mark.asyncio
    async def test_status_pool_skips_inactive_staff(self, orchestrator, store):
        store.update_staff("staff-2", active=False)

        status = await orchestrator.get_status(SHIFT_ID)

        assert status["resolved_pool"] == ["staff-1", "staff-3"]
