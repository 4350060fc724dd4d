"""Work queue on the service database.

Items live in the ``work_items`` table, so scheduled waves and calls
survive a restart and can be served by several instances at once. The
unique ``key`` column is the de-duplication: a second insert for a live
or completed key fails and is reported as a duplicate. Completed rows
stay until ``forget_shift`` starts a new cycle.

A worker owns a row once its guarded UPDATE from ``pending`` to
``running`` matched. A row left ``running`` by a crashed instance goes
back to ``pending`` once ``lease_seconds`` have passed since the claim.

Usage:
    queue = SQLWorkQueue(get_session_factory(), instance_id="api-1")
    queue.set_handler(orchestrator.execute)
    await queue.start()
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shift_escalation.core.logging import get_logger
from shift_escalation.db.models import WorkItemModel, WorkItemState
from shift_escalation.db.repositories import ClosedShiftRepository, WorkItemRepository
from shift_escalation.db.session import get_db_context
from shift_escalation.escalation.intervals import utc_now
from shift_escalation.escalation.queue import PollingWorkQueue, WorkItem
from shift_escalation.store.sql import db_retry

log = get_logger(__name__)


class SQLWorkQueue(PollingWorkQueue):
    """Durable, multi-instance escalation work queue."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        workers: int = 4,
        poll_interval: float = 0.5,
        max_delivery_attempts: int = 3,
        redelivery_backoff: float = 5.0,
        lease_seconds: float = 300.0,
        instance_id: str = "local",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(workers, poll_interval, max_delivery_attempts, redelivery_backoff, clock)
        self._session_factory = session_factory
        self.lease_seconds = lease_seconds
        self.instance_id = instance_id
        self._last_sweep: datetime | None = None

    def _session(self):
        return get_db_context(self._session_factory)

    # ========== Scheduling ==========

    async def schedule(self, item: WorkItem) -> bool:
        key = item.key
        try:
            async with self._session() as session:
                if await ClosedShiftRepository(session).is_closed(item.shift_id):
                    log.info("Shift closed, item not scheduled", key=key, shift_id=item.shift_id)
                    self._stats.duplicates_rejected += 1
                    return False
                await WorkItemRepository(session).create(WorkItemModel.from_domain(item))
        except IntegrityError:
            log.info("Duplicate work item ignored", key=key)
            self._stats.duplicates_rejected += 1
            return False

        self._stats.scheduled += 1
        self._wakeup.set()
        log.info(
            "Work item scheduled",
            key=key,
            kind=item.kind.value,
            fire_at=item.fire_at.isoformat(),
        )
        return True

    @db_retry
    async def remove(self, key: str) -> bool:
        async with self._session() as session:
            removed = await WorkItemRepository(session).delete_key(key, WorkItemState.PENDING)
        if not removed:
            return False
        self._stats.removed += 1
        log.info("Work item removed", key=key)
        return True

    @db_retry
    async def remove_for_shift(self, shift_id: str) -> int:
        async with self._session() as session:
            await ClosedShiftRepository(session).close(shift_id, self.now())
            items = WorkItemRepository(session)
            removed = await items.delete_for_shift(shift_id, WorkItemState.PENDING)
            counts = await items.count_by_state(shift_id)
        self._stats.removed += removed

        log.info(
            "Pending work items removed for shift",
            shift_id=shift_id,
            removed=removed,
            in_flight=counts.get(WorkItemState.RUNNING.value, 0),
        )
        return removed

    @db_retry
    async def forget_shift(self, shift_id: str) -> None:
        async with self._session() as session:
            await ClosedShiftRepository(session).reopen(shift_id)
            await WorkItemRepository(session).delete_for_shift(shift_id, WorkItemState.COMPLETED)

    @db_retry
    async def pending_for_shift(self, shift_id: str) -> list[WorkItem]:
        async with self._session() as session:
            rows = await WorkItemRepository(session).list_for_shift(shift_id, WorkItemState.PENDING)
            return [row.to_domain() for row in rows]

    @db_retry
    async def has_live_items(self, shift_id: str) -> bool:
        async with self._session() as session:
            counts = await WorkItemRepository(session).count_by_state(shift_id)
        return bool(
            counts.get(WorkItemState.PENDING.value, 0) or counts.get(WorkItemState.RUNNING.value, 0)
        )

    # ========== Leases ==========

    async def requeue_stale(self) -> int:
        """Return rows whose claim is older than the lease to ``pending``."""
        now = self.now()
        async with self._session() as session:
            count = await WorkItemRepository(session).requeue_stale(
                now - timedelta(seconds=self.lease_seconds)
            )
        self._last_sweep = now
        if count:
            log.warning("Stale work items re-queued", count=count, lease_seconds=self.lease_seconds)
        return count

    async def _sweep_if_due(self) -> None:
        if self._last_sweep is None or self.now() - self._last_sweep >= timedelta(
            seconds=self.lease_seconds / 2
        ):
            await self.requeue_stale()

    async def start(self) -> None:
        await self.requeue_stale()
        await super().start()

    # ========== Storage hooks ==========

    @db_retry
    async def _take_due(self, ignore_time: bool = False) -> WorkItem | None:
        await self._sweep_if_due()
        now = self.now()
        async with self._session() as session:
            items = WorkItemRepository(session)
            for row in await items.next_due(None if ignore_time else now, limit=self.workers * 2):
                if await items.claim(row.id, self.instance_id, now):
                    return row.to_domain()
        return None

    async def _take_for_delivery(self, item: WorkItem) -> bool:
        key = item.key
        now = self.now()

        async with self._session() as session:
            if await ClosedShiftRepository(session).is_closed(item.shift_id):
                log.info("Shift closed, delivery ignored", key=key, shift_id=item.shift_id)
                return False

            items = WorkItemRepository(session)
            row = await items.get_by_key(key)
            if row is not None:
                if row.state == WorkItemState.PENDING.value and await items.claim(
                    row.id, self.instance_id, now
                ):
                    return True
                log.info("Duplicate delivery ignored", key=key, state=row.state)
                return False

        try:
            async with self._session() as session:
                await WorkItemRepository(session).create(
                    WorkItemModel.from_domain(
                        item,
                        state=WorkItemState.RUNNING,
                        claimed_by=self.instance_id,
                        claimed_at=now,
                    )
                )
        except IntegrityError:
            log.info("Duplicate delivery ignored", key=key)
            return False
        return True

    @db_retry
    async def _finish(self, item: WorkItem) -> None:
        async with self._session() as session:
            await WorkItemRepository(session).complete(item.key)

    @db_retry
    async def _retry(self, item: WorkItem) -> bool:
        async with self._session() as session:
            items = WorkItemRepository(session)
            if await ClosedShiftRepository(session).is_closed(item.shift_id):
                await items.delete_key(item.key)
                return False
            return await items.requeue(item.key, item.fire_at, item.delivery_attempt)

    @db_retry
    async def _discard(self, item: WorkItem) -> None:
        async with self._session() as session:
            await WorkItemRepository(session).delete_key(item.key)

    async def _abandon(self, item: WorkItem) -> None:
        try:
            async with self._session() as session:
                await WorkItemRepository(session).requeue(
                    item.key, item.fire_at, item.delivery_attempt
                )
        except Exception as e:
            # The lease sweep picks the row up instead
            log.warning("Could not release work item", key=item.key, error=str(e))

    async def _pending_and_running(self) -> tuple[int, int]:
        async with self._session() as session:
            counts = await WorkItemRepository(session).count_by_state()
        return (
            counts.get(WorkItemState.PENDING.value, 0),
            counts.get(WorkItemState.RUNNING.value, 0),
        )
