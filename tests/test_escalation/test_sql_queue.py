"""Tests for the database-backed work queue on in-memory SQLite."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW, SHIFT_ID
from shift_escalation.config import Settings, StoreSettings
from shift_escalation.core.exceptions import StoreError
from shift_escalation.db.models import WorkItemState
from shift_escalation.db.repositories import WorkItemRepository
from shift_escalation.db.session import close_db, create_session_factory, get_db_context
from shift_escalation.escalation.orchestrator import EscalationOrchestrator, create_queue
from shift_escalation.escalation.queue import InMemoryWorkQueue, WorkItem
from shift_escalation.escalation.sql_queue import SQLWorkQueue
from shift_escalation.models import ShiftStatus


class Recorder:
    """Work handler that records executed keys."""

    def __init__(self, fail_times: int = 0):
        self.keys: list[str] = []
        self.fail_times = fail_times

    async def __call__(self, item: WorkItem) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise StoreError("database unavailable")
        self.keys.append(item.key)


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


def make_queue(session_factory, clock, instance_id: str = "worker-a") -> SQLWorkQueue:
    return SQLWorkQueue(
        session_factory,
        workers=1,
        poll_interval=0.01,
        redelivery_backoff=0,
        lease_seconds=60,
        instance_id=instance_id,
        clock=clock.now,
    )


@pytest.fixture
def sql_queue(session_factory, clock) -> SQLWorkQueue:
    return make_queue(session_factory, clock)


@pytest.fixture
def recorder(sql_queue) -> Recorder:
    recorder = Recorder()
    sql_queue.set_handler(recorder)
    return recorder


class TestScheduling:
    """De-duplication through the unique key column."""

    @pytest.mark.asyncio
    async def test_schedule_and_run(self, sql_queue, recorder):
        assert await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW, {"interval_minutes": 10}))

        pending = await sql_queue.pending_for_shift("shift-1")
        assert [item.key for item in pending] == ["wave-1-shift-1"]
        assert pending[0].payload == {"interval_minutes": 10}
        assert pending[0].fire_at == NOW

        await sql_queue.run_next()

        assert recorder.keys == ["wave-1-shift-1"]
        assert await sql_queue.pending_for_shift("shift-1") == []

    @pytest.mark.asyncio
    async def test_duplicate_pending_key_rejected(self, sql_queue, recorder):
        assert await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))
        assert not await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW + timedelta(minutes=5)))

        assert len(await sql_queue.pending_for_shift("shift-1")) == 1
        assert sql_queue.stats.duplicates_rejected == 1

    @pytest.mark.asyncio
    async def test_completed_key_rejected(self, sql_queue, recorder):
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))
        await sql_queue.drain()

        assert not await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))
        assert recorder.keys == ["wave-1-shift-1"]

    @pytest.mark.asyncio
    async def test_runs_in_fire_time_order(self, sql_queue, recorder):
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 2, NOW + timedelta(minutes=10)))
        await sql_queue.schedule(WorkItem.sms_wave("shift-2", 1, NOW + timedelta(minutes=1)))
        await sql_queue.schedule(WorkItem.sms_wave("shift-3", 1, NOW))

        await sql_queue.drain()

        assert recorder.keys == ["wave-1-shift-3", "wave-1-shift-2", "wave-2-shift-1"]

    @pytest.mark.asyncio
    async def test_not_due_items_wait(self, sql_queue, recorder, clock):
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW + timedelta(minutes=5)))

        assert await sql_queue.run_next(ignore_time=False) is None

        clock.advance(minutes=5)
        assert await sql_queue.run_next(ignore_time=False) is not None

    @pytest.mark.asyncio
    async def test_remove(self, sql_queue, recorder):
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 2, NOW))

        assert await sql_queue.remove("wave-2-shift-1")
        assert not await sql_queue.remove("wave-2-shift-1")
        assert await sql_queue.drain() == 0

    @pytest.mark.asyncio
    async def test_remove_for_shift_closes_it(self, sql_queue, recorder):
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 2, NOW))
        await sql_queue.schedule(WorkItem.outbound_call("shift-1", 1, 0, NOW))
        await sql_queue.schedule(WorkItem.sms_wave("shift-2", 1, NOW))

        assert await sql_queue.remove_for_shift("shift-1") == 2
        assert not await sql_queue.schedule(WorkItem.outbound_call("shift-1", 2, 0, NOW))

        await sql_queue.drain()
        assert recorder.keys == ["wave-1-shift-2"]

    @pytest.mark.asyncio
    async def test_forget_shift_reopens(self, sql_queue, recorder):
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))
        await sql_queue.drain()
        await sql_queue.remove_for_shift("shift-1")

        await sql_queue.forget_shift("shift-1")

        assert await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))

    @pytest.mark.asyncio
    async def test_has_live_items(self, sql_queue, recorder):
        assert not await sql_queue.has_live_items("shift-1")

        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))

        assert await sql_queue.has_live_items("shift-1")


class TestDelivery:
    """At-least-once delivery and redelivery."""

    @pytest.mark.asyncio
    async def test_failed_item_is_redelivered(self, sql_queue):
        recorder = Recorder(fail_times=1)
        sql_queue.set_handler(recorder)
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))

        await sql_queue.drain()

        assert recorder.keys == ["wave-1-shift-1"]
        assert sql_queue.stats.redelivered == 1
        assert sql_queue.stats.executed == 1

    @pytest.mark.asyncio
    async def test_dropped_after_max_attempts(self, sql_queue):
        sql_queue.set_handler(Recorder(fail_times=10))
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))

        await sql_queue.drain()

        assert sql_queue.stats.failed == sql_queue.max_delivery_attempts
        assert sql_queue.stats.dropped == 1
        assert not await sql_queue.has_live_items("shift-1")

    @pytest.mark.asyncio
    async def test_duplicate_delivery_ignored(self, sql_queue, recorder):
        item = WorkItem.sms_wave("shift-1", 1, NOW)

        assert await sql_queue.deliver(item)
        assert not await sql_queue.deliver(item)
        assert recorder.keys == ["wave-1-shift-1"]

    @pytest.mark.asyncio
    async def test_delivery_takes_over_pending_row(self, sql_queue, recorder):
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 2, NOW + timedelta(minutes=10)))

        assert await sql_queue.deliver(WorkItem.sms_wave("shift-1", 2, NOW))

        assert recorder.keys == ["wave-2-shift-1"]
        assert await sql_queue.pending_for_shift("shift-1") == []

    @pytest.mark.asyncio
    async def test_delivery_to_closed_shift_ignored(self, sql_queue, recorder):
        await sql_queue.remove_for_shift("shift-1")

        assert not await sql_queue.deliver(WorkItem.sms_wave("shift-1", 2, NOW))
        assert recorder.keys == []


class TestSharedDatabase:
    """Restarts and several instances on one database."""

    @pytest.mark.asyncio
    async def test_items_survive_restart(self, session_factory, clock):
        first = make_queue(session_factory, clock)
        await first.schedule(WorkItem.sms_wave("shift-1", 2, NOW + timedelta(minutes=10)))

        restarted = make_queue(session_factory, clock)
        recorder = Recorder()
        restarted.set_handler(recorder)

        assert [item.key for item in await restarted.pending_for_shift("shift-1")] == ["wave-2-shift-1"]
        assert not await restarted.schedule(WorkItem.sms_wave("shift-1", 2, NOW))

        clock.advance(minutes=10)
        await restarted.run_next(ignore_time=False)
        assert recorder.keys == ["wave-2-shift-1"]

    @pytest.mark.asyncio
    async def test_item_taken_by_one_instance(self, session_factory, clock):
        first = make_queue(session_factory, clock, "worker-a")
        second = make_queue(session_factory, clock, "worker-b")
        first_keys, second_keys = Recorder(), Recorder()
        first.set_handler(first_keys)
        second.set_handler(second_keys)
        await first.schedule(WorkItem.sms_wave("shift-1", 1, NOW))

        await first.run_next()
        await second.run_next()

        assert first_keys.keys == ["wave-1-shift-1"]
        assert second_keys.keys == []

    @pytest.mark.asyncio
    async def test_guarded_claim_has_one_winner(self, session_factory, sql_queue):
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))

        async with get_db_context(session_factory) as session:
            repo = WorkItemRepository(session)
            row = await repo.get_by_key("wave-1-shift-1")
            first = await repo.claim(row.id, "worker-a", NOW)
            second = await repo.claim(row.id, "worker-b", NOW)

        assert first is True
        assert second is False

    @pytest.mark.asyncio
    async def test_stale_claim_requeued_after_lease(self, session_factory, clock):
        crashed = make_queue(session_factory, clock, "worker-a")
        await crashed.schedule(WorkItem.sms_wave("shift-1", 1, NOW))
        # Taken but never finished
        assert await crashed._take_due(ignore_time=True) is not None

        survivor = make_queue(session_factory, clock, "worker-b")
        recorder = Recorder()
        survivor.set_handler(recorder)

        assert await survivor.run_next() is None
        assert await survivor.has_live_items("shift-1")

        clock.advance(seconds=61)
        assert await survivor.requeue_stale() == 1
        await survivor.run_next()

        assert recorder.keys == ["wave-1-shift-1"]

    @pytest.mark.asyncio
    async def test_status_counts(self, sql_queue, recorder):
        await sql_queue.schedule(WorkItem.sms_wave("shift-1", 1, NOW))
        await sql_queue.schedule(WorkItem.sms_wave("shift-2", 1, NOW))
        await sql_queue.run_next()

        status = await sql_queue.get_status()

        assert status["backend"] == "SQLWorkQueue"
        assert status["pending"] == 1
        assert status["running"] == 0

        async with get_db_context(sql_queue._session_factory) as session:
            counts = await WorkItemRepository(session).count_by_state()
        assert counts[WorkItemState.COMPLETED.value] == 1


class TestQueueSelection:
    @pytest.mark.asyncio
    async def test_sql_backend_uses_sql_queue(self):
        queue = create_queue(Settings(store=StoreSettings(backend="sql")))
        await close_db()

        assert isinstance(queue, SQLWorkQueue)

    def test_memory_backend_uses_heap(self):
        queue = create_queue(Settings(store=StoreSettings(backend="memory")))

        assert isinstance(queue, InMemoryWorkQueue)


class TestEscalationOnSqlQueue:
    """A full cycle with both the store and the queue on the database."""

    @pytest.mark.asyncio
    async def test_nobody_answers(self, sql_store, sql_queue, sms, voice, settings):
        orchestrator = EscalationOrchestrator(sql_store, sql_queue, sms, voice, settings)

        await orchestrator.start_escalation(SHIFT_ID)
        await sql_queue.drain()

        shift = await sql_store.get_shift(SHIFT_ID)
        assert shift.status == ShiftStatus.UNFILLED_AFTER_ESCALATION
        assert len(await sql_store.list_call_attempts(SHIFT_ID)) == 9
        assert not await sql_queue.has_live_items(SHIFT_ID)

    @pytest.mark.asyncio
    async def test_cancel_stops_redelivered_wave(self, sql_store, sql_queue, sms, voice, settings):
        orchestrator = EscalationOrchestrator(sql_store, sql_queue, sms, voice, settings)
        await orchestrator.start_escalation(SHIFT_ID)
        await sql_queue.run_next()

        await orchestrator.cancel_escalation(SHIFT_ID)

        assert not await sql_queue.deliver(WorkItem.sms_wave(SHIFT_ID, 2, NOW))
        assert len(sms.get_sent_messages()) == 3
