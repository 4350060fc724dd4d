"""Query helpers over the ORM models, one repository per table.

Repositories share the caller's session and only flush; the unit of
work in ``get_db_context`` commits.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shift_escalation.db.base import Base
from shift_escalation.db.models import (
    CallAttemptModel,
    ClosedShiftModel,
    NotificationModel,
    ProviderPolicyModel,
    ShiftModel,
    StaffModel,
    WorkItemModel,
    WorkItemState,
)
from shift_escalation.models import ShiftStatus

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, pk: Any) -> ModelT | None:
        return await self._session.get(self.model, pk)

    async def create(self, row: ModelT) -> ModelT:
        self._session.add(row)
        await self._session.flush()
        return row

    async def create_multi(self, rows: list[ModelT]) -> list[ModelT]:
        self._session.add_all(rows)
        await self._session.flush()
        return rows

    async def find_one(self, **columns: Any) -> ModelT | None:
        stmt = select(self.model).filter_by(**columns).limit(1)
        return (await self._session.execute(stmt)).scalars().first()


class ShiftRepository(BaseRepository[ShiftModel]):
    model = ShiftModel

    async def compare_and_set_status(
        self,
        shift_id: str,
        expected: ShiftStatus,
        new_status: ShiftStatus,
        assigned_staff_id: str | None = None,
        reason: str | None = None,
    ) -> bool:
        """Single guarded UPDATE; True only for the writer whose WHERE still matched."""
        stmt = (
            update(ShiftModel)
            .where(ShiftModel.id == shift_id, ShiftModel.status == expected.value)
            .values(
                status=new_status.value,
                assigned_staff_id=assigned_staff_id,
                status_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def set_status_reason(self, shift_id: str, reason: str, expected: ShiftStatus) -> bool:
        stmt = (
            update(ShiftModel)
            .where(ShiftModel.id == shift_id, ShiftModel.status == expected.value)
            .values(status_reason=reason)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class StaffRepository(BaseRepository[StaffModel]):
    model = StaffModel

    async def list_active(self, provider_id: str) -> Sequence[StaffModel]:
        stmt = select(StaffModel).where(
            StaffModel.provider_id == provider_id,
            StaffModel.active.is_(True),
        )
        return (await self._session.execute(stmt)).scalars().all()

    async def find_by_phone(self, phone: str) -> StaffModel | None:
        return await self.find_one(phone=phone)


class ProviderPolicyRepository(BaseRepository[ProviderPolicyModel]):
    model = ProviderPolicyModel


class CallAttemptRepository(BaseRepository[CallAttemptModel]):
    model = CallAttemptModel

    async def list_for_shift(self, shift_id: str) -> Sequence[CallAttemptModel]:
        stmt = (
            select(CallAttemptModel)
            .where(CallAttemptModel.shift_id == shift_id)
            .order_by(
                CallAttemptModel.attempted_at,
                CallAttemptModel.round,
                CallAttemptModel.staff_index,
            )
        )
        return (await self._session.execute(stmt)).scalars().all()


class NotificationRepository(BaseRepository[NotificationModel]):
    model = NotificationModel

    async def _latest(self, staff_id: str, open_only: bool) -> str | None:
        stmt = select(NotificationModel.shift_id).where(
            NotificationModel.staff_id == staff_id,
            NotificationModel.success.is_(True),
        )
        if open_only:
            stmt = stmt.join(ShiftModel, ShiftModel.id == NotificationModel.shift_id).where(
                ShiftModel.status == ShiftStatus.OPEN.value
            )
        stmt = stmt.order_by(NotificationModel.sent_at.desc()).limit(1)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def latest_open_offer(self, staff_id: str) -> str | None:
        """Most recent still-open shift the staff member was texted about."""
        return await self._latest(staff_id, open_only=True)

    async def latest_offer(self, staff_id: str) -> str | None:
        return await self._latest(staff_id, open_only=False)


class WorkItemRepository(BaseRepository[WorkItemModel]):
    """Queued escalation steps.

    State changes are guarded UPDATEs: a worker owns a row only if its
    UPDATE matched the state it read.
    """

    model = WorkItemModel

    async def get_by_key(self, key: str) -> WorkItemModel | None:
        return await self.find_one(key=key)

    async def next_due(self, now: datetime | None, limit: int) -> Sequence[WorkItemModel]:
        """Pending rows in run order; ``now=None`` ignores fire times."""
        stmt = select(WorkItemModel).where(WorkItemModel.state == WorkItemState.PENDING.value)
        if now is not None:
            stmt = stmt.where(WorkItemModel.fire_at <= now)
        stmt = stmt.order_by(
            WorkItemModel.fire_at,
            WorkItemModel.priority,
            WorkItemModel.id,
        ).limit(limit)
        return (await self._session.execute(stmt)).scalars().all()

    async def claim(self, row_id: int, worker: str, now: datetime) -> bool:
        stmt = (
            update(WorkItemModel)
            .where(
                WorkItemModel.id == row_id,
                WorkItemModel.state == WorkItemState.PENDING.value,
            )
            .values(state=WorkItemState.RUNNING.value, claimed_by=worker, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def complete(self, key: str) -> None:
        stmt = (
            update(WorkItemModel)
            .where(WorkItemModel.key == key)
            .values(state=WorkItemState.COMPLETED.value, claimed_by=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def requeue(self, key: str, fire_at: datetime, delivery_attempt: int) -> bool:
        stmt = (
            update(WorkItemModel)
            .where(WorkItemModel.key == key)
            .values(
                state=WorkItemState.PENDING.value,
                fire_at=fire_at,
                delivery_attempt=delivery_attempt,
                claimed_by=None,
                claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def requeue_stale(self, claimed_before: datetime) -> int:
        """Hand running rows whose lease ran out back to the pending pool."""
        stmt = (
            update(WorkItemModel)
            .where(
                WorkItemModel.state == WorkItemState.RUNNING.value,
                WorkItemModel.claimed_at < claimed_before,
            )
            .values(state=WorkItemState.PENDING.value, claimed_by=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def delete_key(self, key: str, state: WorkItemState | None = None) -> int:
        stmt = delete(WorkItemModel).where(WorkItemModel.key == key)
        if state is not None:
            stmt = stmt.where(WorkItemModel.state == state.value)
        result = await self._session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    async def delete_for_shift(self, shift_id: str, state: WorkItemState) -> int:
        stmt = (
            delete(WorkItemModel)
            .where(WorkItemModel.shift_id == shift_id, WorkItemModel.state == state.value)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def list_for_shift(self, shift_id: str, state: WorkItemState) -> Sequence[WorkItemModel]:
        stmt = (
            select(WorkItemModel)
            .where(WorkItemModel.shift_id == shift_id, WorkItemModel.state == state.value)
            .order_by(WorkItemModel.fire_at, WorkItemModel.priority, WorkItemModel.id)
        )
        return (await self._session.execute(stmt)).scalars().all()

    async def count_by_state(self, shift_id: str | None = None) -> dict[str, int]:
        stmt = select(WorkItemModel.state, func.count()).group_by(WorkItemModel.state)
        if shift_id is not None:
            stmt = stmt.where(WorkItemModel.shift_id == shift_id)
        rows = (await self._session.execute(stmt)).all()
        return {state: count for state, count in rows}


class ClosedShiftRepository(BaseRepository[ClosedShiftModel]):
    model = ClosedShiftModel

    async def is_closed(self, shift_id: str) -> bool:
        return await self.get(shift_id) is not None

    async def close(self, shift_id: str, now: datetime) -> None:
        if not await self.is_closed(shift_id):
            await self.create(ClosedShiftModel(shift_id=shift_id, closed_at=now))

    async def reopen(self, shift_id: str) -> None:
        stmt = (
            delete(ClosedShiftModel)
            .where(ClosedShiftModel.shift_id == shift_id)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
