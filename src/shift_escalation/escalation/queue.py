"""Delay-capable work queue for escalation steps.

Every scheduled step is a ``WorkItem`` whose key is derived from
(shift, kind, wave or round, staff index). The queue keeps at most one live
item per key, refuses keys that already completed, and can drop every
pending item of a shift in one call.

Two backends share the worker loop: ``InMemoryWorkQueue`` keeps items
in a heap, ``SQLWorkQueue`` (sql_queue.py) keeps them in the
``work_items`` table so a restart or a second instance picks them up.
Workers poll for due items the same way the outbound dialer polls its
call queue. Tests drive the queue deterministically with ``run_next()``
/ ``drain()`` instead of starting workers.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable

from shift_escalation.core.exceptions import WorkQueueError
from shift_escalation.core.logging import get_logger, log_context
from shift_escalation.core.retry import RetryConfig
from shift_escalation.escalation.intervals import utc_now
from shift_escalation.models import WorkItemKind

log = get_logger(__name__)


class QueueStatus(str, Enum):
    """Worker pool status."""

    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class ItemPriority(int, Enum):
    """Tie-break between items due at the same instant (lower runs first)."""

    FIRST_WAVE = 1
    LATER_WAVE = 3
    FIRST_ROUND_CALL = 5
    LATER_ROUND_CALL = 7


def wave_key(shift_id: str, wave: int) -> str:
    return f"wave-{wave}-{shift_id}"


def call_key(shift_id: str, round_number: int, staff_index: int) -> str:
    return f"outbound-{shift_id}-r{round_number}-s{staff_index}"


@dataclass(order=True, frozen=True)
class WorkItem:
    """A delay-scheduled escalation step.

    Items are never updated in place; re-delivery produces a copy with
    the same key.
    """

    fire_at: datetime = field(compare=True)
    priority: int = field(compare=True)
    sequence: int = field(default=0, compare=True)

    shift_id: str = field(default="", compare=False)
    kind: WorkItemKind = field(default=WorkItemKind.SMS_WAVE, compare=False)
    wave: int | None = field(default=None, compare=False)
    round: int | None = field(default=None, compare=False)
    staff_index: int | None = field(default=None, compare=False)
    payload: dict[str, Any] = field(default_factory=dict, compare=False)
    delivery_attempt: int = field(default=1, compare=False)
    created_at: datetime = field(default_factory=utc_now, compare=False)

    @property
    def key(self) -> str:
        if self.kind == WorkItemKind.SMS_WAVE:
            return wave_key(self.shift_id, self.wave or 0)
        return call_key(self.shift_id, self.round or 0, self.staff_index or 0)

    @classmethod
    def sms_wave(
        cls,
        shift_id: str,
        wave: int,
        fire_at: datetime,
        payload: dict[str, Any] | None = None,
    ) -> "WorkItem":
        return cls(
            fire_at=fire_at,
            priority=ItemPriority.FIRST_WAVE if wave == 1 else ItemPriority.LATER_WAVE,
            shift_id=shift_id,
            kind=WorkItemKind.SMS_WAVE,
            wave=wave,
            payload=payload or {},
        )

    @classmethod
    def outbound_call(
        cls,
        shift_id: str,
        round_number: int,
        staff_index: int,
        fire_at: datetime,
        payload: dict[str, Any] | None = None,
    ) -> "WorkItem":
        return cls(
            fire_at=fire_at,
            priority=(
                ItemPriority.FIRST_ROUND_CALL
                if round_number == 1
                else ItemPriority.LATER_ROUND_CALL
            ),
            shift_id=shift_id,
            kind=WorkItemKind.OUTBOUND_CALL,
            round=round_number,
            staff_index=staff_index,
            payload=payload or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "shift_id": self.shift_id,
            "kind": self.kind.value,
            "wave": self.wave,
            "round": self.round,
            "staff_index": self.staff_index,
            "fire_at": self.fire_at.isoformat(),
            "delivery_attempt": self.delivery_attempt,
        }


@dataclass
class QueueStats:
    """Work queue counters."""

    scheduled: int = 0
    duplicates_rejected: int = 0
    executed: int = 0
    failed: int = 0
    redelivered: int = 0
    dropped: int = 0
    removed: int = 0
    started_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheduled": self.scheduled,
            "duplicates_rejected": self.duplicates_rejected,
            "executed": self.executed,
            "failed": self.failed,
            "redelivered": self.redelivered,
            "dropped": self.dropped,
            "removed": self.removed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


WorkHandler = Callable[[WorkItem], Awaitable[None]]


class WorkQueue(ABC):
    """Interface of the escalation work queue.

    Methods are async so a shared database-backed queue can implement them.
    """

    def now(self) -> datetime:
        """Clock used for fire times (naive UTC)."""
        return utc_now()

    @abstractmethod
    def set_handler(self, handler: WorkHandler) -> None:
        """Register the coroutine that executes due items."""

    @abstractmethod
    async def schedule(self, item: WorkItem) -> bool:
        """Add an item; False if its key is live, completed, or its shift is closed."""

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Remove one pending item by key."""

    @abstractmethod
    async def remove_for_shift(self, shift_id: str) -> int:
        """Remove every pending item of a shift and refuse new ones."""

    @abstractmethod
    async def forget_shift(self, shift_id: str) -> None:
        """Clear completion history of a shift so a new cycle can start."""

    @abstractmethod
    async def pending_for_shift(self, shift_id: str) -> list[WorkItem]:
        """Pending items of a shift, earliest first."""

    @abstractmethod
    async def has_live_items(self, shift_id: str) -> bool:
        """True while a shift has pending or running items."""

    @abstractmethod
    async def deliver(self, item: WorkItem) -> bool:
        """Execute an item delivered from outside the schedule (redelivery).

        Refused for a closed shift or a key that is running or completed.
        """

    async def get_status(self) -> dict[str, Any]:
        """Counters reported by the health endpoint."""
        return {"status": "unknown"}

    async def start(self) -> None:
        """Start consuming due items."""

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop consuming items."""


class PollingWorkQueue(WorkQueue):
    """Worker pool, execution and redelivery shared by the queue backends.

    Subclasses own the storage. An item handed to ``_execute`` has already
    been marked running by ``_take_due`` or ``_take_for_delivery``, and
    leaves that state through exactly one of ``_finish``, ``_retry``,
    ``_discard`` or ``_abandon``.
    """

    def __init__(
        self,
        workers: int = 4,
        poll_interval: float = 0.5,
        max_delivery_attempts: int = 3,
        redelivery_backoff: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.workers = workers
        self.poll_interval = poll_interval
        self.max_delivery_attempts = max_delivery_attempts
        self._redelivery = RetryConfig(
            max_attempts=max_delivery_attempts,
            base_delay=redelivery_backoff,
            max_delay=redelivery_backoff * 8,
            jitter=0.0,
        )
        self._clock = clock
        self._handler: WorkHandler | None = None

        self._status = QueueStatus.STOPPED
        self._stats = QueueStats()
        self._wakeup = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    # ========== Properties ==========

    @property
    def status(self) -> QueueStatus:
        return self._status

    @property
    def stats(self) -> QueueStats:
        return self._stats

    def now(self) -> datetime:
        return self._clock()

    def set_handler(self, handler: WorkHandler) -> None:
        self._handler = handler

    # ========== Storage ==========

    @abstractmethod
    async def _take_due(self, ignore_time: bool = False) -> WorkItem | None:
        """Mark the earliest due pending item running and return it."""

    @abstractmethod
    async def _take_for_delivery(self, item: WorkItem) -> bool:
        """Mark an externally delivered item running; False to refuse it."""

    @abstractmethod
    async def _finish(self, item: WorkItem) -> None:
        """Record a successful run; the key now counts as completed."""

    @abstractmethod
    async def _retry(self, item: WorkItem) -> bool:
        """Put a failed item back as pending; False if its shift was closed meanwhile."""

    @abstractmethod
    async def _discard(self, item: WorkItem) -> None:
        """Forget a running item without completing it."""

    async def _abandon(self, item: WorkItem) -> None:
        """A worker was cancelled mid-item."""
        await self._discard(item)

    async def _pending_and_running(self) -> tuple[int, int]:
        return 0, 0

    # ========== Execution ==========

    async def _execute(self, item: WorkItem) -> None:
        if self._handler is None:
            await self._discard(item)
            raise WorkQueueError("No handler registered", details={"key": item.key})

        try:
            with log_context(shift_id=item.shift_id, key=item.key):
                await self._handler(item)

        except asyncio.CancelledError:
            await self._abandon(item)
            raise

        except Exception as e:
            self._stats.failed += 1
            log.error(
                "Work item failed",
                key=item.key,
                delivery_attempt=item.delivery_attempt,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._redeliver(item)

        else:
            await self._finish(item)
            self._stats.executed += 1

    async def _redeliver(self, item: WorkItem) -> None:
        if item.delivery_attempt >= self.max_delivery_attempts:
            await self._discard(item)
            self._stats.dropped += 1
            log.error(
                "Work item dropped after repeated failures",
                key=item.key,
                attempts=item.delivery_attempt,
            )
            return

        delay = self._redelivery.calculate_delay(item.delivery_attempt)
        retry_item = replace(
            item,
            delivery_attempt=item.delivery_attempt + 1,
            fire_at=self.now() + timedelta(seconds=delay),
        )
        if await self._retry(retry_item):
            self._stats.redelivered += 1
            self._wakeup.set()
            log.info("Work item re-queued", key=item.key, delay=delay)

    async def deliver(self, item: WorkItem) -> bool:
        if not await self._take_for_delivery(item):
            self._stats.duplicates_rejected += 1
            return False

        await self._execute(item)
        return True

    async def run_next(self, ignore_time: bool = True) -> WorkItem | None:
        """Execute the earliest pending item.

        Args:
            ignore_time: Run it even if its fire time has not arrived

        Returns:
            The executed item, or None if nothing was runnable
        """
        item = await self._take_due(ignore_time=ignore_time)
        if item is not None:
            await self._execute(item)
        return item

    async def drain(self, max_items: int = 1000) -> int:
        """Run pending items in fire-time order until the queue is empty."""
        count = 0
        while count < max_items and await self.run_next() is not None:
            count += 1
        return count

    # ========== Workers ==========

    async def start(self) -> None:
        if self._status == QueueStatus.RUNNING:
            return

        self._status = QueueStatus.RUNNING
        self._stats.started_at = utc_now()
        self._tasks = [
            asyncio.create_task(self._worker_loop(n)) for n in range(self.workers)
        ]
        log.info("Work queue started", workers=self.workers, backend=type(self).__name__)

    async def stop(self, timeout: float = 10.0) -> None:
        if self._status == QueueStatus.STOPPED:
            return

        self._status = QueueStatus.STOPPED
        self._wakeup.set()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.wait(self._tasks, timeout=timeout)
        self._tasks = []

        log.info("Work queue stopped", executed=self._stats.executed)

    def pause(self) -> None:
        if self._status == QueueStatus.RUNNING:
            self._status = QueueStatus.PAUSED
            log.info("Work queue paused")

    def resume(self) -> None:
        if self._status == QueueStatus.PAUSED:
            self._status = QueueStatus.RUNNING
            self._wakeup.set()
            log.info("Work queue resumed")

    async def _worker_loop(self, worker: int) -> None:
        while self._status != QueueStatus.STOPPED:
            try:
                item = None
                if self._status == QueueStatus.RUNNING:
                    item = await self._take_due()

                if item is None:
                    self._wakeup.clear()
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
                    except asyncio.TimeoutError:
                        pass
                    continue

                await self._execute(item)

            except asyncio.CancelledError:
                break
            except Exception as e:
                log.error("Worker loop error", worker=worker, error=str(e))
                await asyncio.sleep(self.poll_interval)

    async def get_status(self) -> dict[str, Any]:
        pending, running = await self._pending_and_running()
        return {
            "status": self._status.value,
            "backend": type(self).__name__,
            "pending": pending,
            "running": running,
            "stats": self._stats.to_dict(),
        }


class InMemoryWorkQueue(PollingWorkQueue):
    """In-process delay queue with a small worker pool.

    Removal is lazy: removed keys are dropped from the pending index and
    their heap entries are skipped when they surface. Nothing survives a
    restart; ``SQLWorkQueue`` keeps the same contract on the database.

    Usage:
        queue = InMemoryWorkQueue(workers=4)
        queue.set_handler(orchestrator.execute)
        await queue.start()
        await queue.schedule(WorkItem.sms_wave("shift-1", 1, queue.now()))
    """

    def __init__(
        self,
        workers: int = 4,
        poll_interval: float = 0.5,
        max_delivery_attempts: int = 3,
        redelivery_backoff: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(workers, poll_interval, max_delivery_attempts, redelivery_backoff, clock)

        self._heap: list[WorkItem] = []
        self._pending: dict[str, WorkItem] = {}
        self._running: dict[str, WorkItem] = {}
        self._completed: dict[str, set[str]] = {}
        self._closed_shifts: set[str] = set()
        self._sequence = itertools.count()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ========== Scheduling ==========

    def is_live(self, key: str) -> bool:
        return key in self._pending or key in self._running

    def is_completed(self, item: WorkItem) -> bool:
        return item.key in self._completed.get(item.shift_id, set())

    async def schedule(self, item: WorkItem) -> bool:
        key = item.key

        if item.shift_id in self._closed_shifts:
            log.info("Shift closed, item not scheduled", key=key, shift_id=item.shift_id)
            self._stats.duplicates_rejected += 1
            return False

        if self.is_live(key) or self.is_completed(item):
            log.info("Duplicate work item ignored", key=key)
            self._stats.duplicates_rejected += 1
            return False

        self._push(item)
        self._stats.scheduled += 1

        log.info(
            "Work item scheduled",
            key=key,
            kind=item.kind.value,
            fire_at=item.fire_at.isoformat(),
            queue_size=len(self._pending),
        )
        return True

    def _push(self, item: WorkItem) -> None:
        item = replace(item, sequence=next(self._sequence))
        self._pending[item.key] = item
        heapq.heappush(self._heap, item)
        self._wakeup.set()

    async def remove(self, key: str) -> bool:
        item = self._pending.pop(key, None)
        if item is None:
            return False
        self._stats.removed += 1
        log.info("Work item removed", key=key)
        return True

    async def remove_for_shift(self, shift_id: str) -> int:
        self._closed_shifts.add(shift_id)
        keys = [key for key, item in self._pending.items() if item.shift_id == shift_id]
        for key in keys:
            del self._pending[key]
        self._stats.removed += len(keys)

        log.info(
            "Pending work items removed for shift",
            shift_id=shift_id,
            removed=len(keys),
            in_flight=sum(1 for item in self._running.values() if item.shift_id == shift_id),
        )
        return len(keys)

    async def forget_shift(self, shift_id: str) -> None:
        self._closed_shifts.discard(shift_id)
        self._completed.pop(shift_id, None)

    async def pending_for_shift(self, shift_id: str) -> list[WorkItem]:
        return sorted(item for item in self._pending.values() if item.shift_id == shift_id)

    async def has_live_items(self, shift_id: str) -> bool:
        if any(item.shift_id == shift_id for item in self._pending.values()):
            return True
        return any(item.shift_id == shift_id for item in self._running.values())

    # ========== Storage hooks ==========

    async def _take_due(self, ignore_time: bool = False) -> WorkItem | None:
        now = self.now()
        while self._heap:
            head = self._heap[0]
            if self._pending.get(head.key) is not head:
                # Removed or superseded
                heapq.heappop(self._heap)
                continue
            if not ignore_time and head.fire_at > now:
                return None
            heapq.heappop(self._heap)
            del self._pending[head.key]
            self._running[head.key] = head
            return head
        return None

    async def _take_for_delivery(self, item: WorkItem) -> bool:
        key = item.key
        if item.shift_id in self._closed_shifts:
            log.info("Shift closed, delivery ignored", key=key, shift_id=item.shift_id)
            return False
        if key in self._running or self.is_completed(item):
            log.info("Duplicate delivery ignored", key=key)
            return False

        self._pending.pop(key, None)
        self._running[key] = item
        return True

    async def _finish(self, item: WorkItem) -> None:
        self._running.pop(item.key, None)
        self._completed.setdefault(item.shift_id, set()).add(item.key)

    async def _retry(self, item: WorkItem) -> bool:
        self._running.pop(item.key, None)
        if item.shift_id in self._closed_shifts:
            return False
        self._push(item)
        return True

    async def _discard(self, item: WorkItem) -> None:
        self._running.pop(item.key, None)

    async def _pending_and_running(self) -> tuple[int, int]:
        return len(self._pending), len(self._running)
