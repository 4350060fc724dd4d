"""SQLAlchemy-backed shift store.

Every operation runs in its own short session: the store offers no
transactional guarantee across calls, and the escalation core never
needs one. The only conditional write is the status compare-and-set.
"""
from __future__ import annotations

from dataclasses import replace

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shift_escalation.core.exceptions import ShiftNotFoundError, StoreError
from shift_escalation.core.logging import get_logger
from shift_escalation.core.retry import retry
from shift_escalation.db.models import (
    CallAttemptModel,
    NotificationModel,
    ProviderPolicyModel,
    ShiftModel,
    StaffModel,
)
from shift_escalation.db.repositories import (
    CallAttemptRepository,
    NotificationRepository,
    ProviderPolicyRepository,
    ShiftRepository,
    StaffRepository,
)
from shift_escalation.db.session import get_db_context
from shift_escalation.models import (
    CallAttempt,
    Notification,
    ProviderPolicy,
    Shift,
    ShiftStatus,
    StaffMember,
)
from shift_escalation.phone import normalize_phone
from shift_escalation.store.base import ShiftStore

log = get_logger(__name__)

# Transient database errors (locked SQLite file, dropped connection)
db_retry = retry(
    max_attempts=3,
    base_delay=0.2,
    max_delay=2.0,
    retryable_exceptions=(OperationalError,),
)


class SQLShiftStore(ShiftStore):
    """Shift store on the service database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _session(self):
        return get_db_context(self._session_factory)

    # ========== Seeding ==========

    async def add_shift(self, shift: Shift) -> None:
        async with self._session() as session:
            await ShiftRepository(session).create(ShiftModel.from_domain(shift))

    async def add_staff(self, *staff: StaffMember) -> None:
        async with self._session() as session:
            await StaffRepository(session).create_multi(
                [
                    StaffModel.from_domain(
                        replace(member, phone=normalize_phone(member.phone) if member.phone else None)
                    )
                    for member in staff
                ]
            )

    async def set_policy(self, policy: ProviderPolicy) -> None:
        async with self._session() as session:
            await session.merge(
                ProviderPolicyModel(
                    provider_id=policy.provider_id,
                    outbound_enabled=policy.outbound_enabled,
                    max_rounds=policy.max_rounds,
                    inter_call_delay_seconds=policy.inter_call_delay_seconds,
                    inter_round_delay_seconds=policy.inter_round_delay_seconds,
                    wait_minutes_after_waves=policy.wait_minutes_after_waves,
                    call_message_template=policy.call_message_template,
                    privacy_mode=policy.privacy_mode,
                )
            )

    # ========== ShiftStore ==========

    @db_retry
    async def get_shift(self, shift_id: str) -> Shift:
        async with self._session() as session:
            model = await ShiftRepository(session).get(shift_id)
            if model is None:
                raise ShiftNotFoundError(
                    f"Shift {shift_id} not found",
                    details={"shift_id": shift_id},
                )
            return model.to_domain()

    async def compare_and_set_status(
        self,
        shift_id: str,
        expected: ShiftStatus,
        new_status: ShiftStatus,
        assigned_staff_id: str | None = None,
        reason: str | None = None,
    ) -> bool:
        try:
            async with self._session() as session:
                changed = await ShiftRepository(session).compare_and_set_status(
                    shift_id,
                    expected,
                    new_status,
                    assigned_staff_id=assigned_staff_id,
                    reason=reason,
                )
        except OperationalError as e:
            raise StoreError(
                "Shift status update failed",
                details={"shift_id": shift_id},
                cause=e,
            ) from e

        if changed:
            log.info(
                "Shift status changed",
                shift_id=shift_id,
                from_status=expected.value,
                to_status=new_status.value,
                assigned_staff_id=assigned_staff_id,
            )
            return True

        # Distinguish a lost race from a missing record
        await self.get_shift(shift_id)
        return False

    @db_retry
    async def set_status_reason(
        self,
        shift_id: str,
        reason: str,
        expected: ShiftStatus = ShiftStatus.OPEN,
    ) -> bool:
        async with self._session() as session:
            changed = await ShiftRepository(session).set_status_reason(shift_id, reason, expected)

        if changed:
            log.info("Shift status reason recorded", shift_id=shift_id, reason=reason)
            return True

        await self.get_shift(shift_id)
        return False

    @db_retry
    async def list_active_staff(self, provider_id: str) -> list[StaffMember]:
        async with self._session() as session:
            models = await StaffRepository(session).list_active(provider_id)
            return [model.to_domain() for model in models]

    @db_retry
    async def get_staff(self, staff_id: str) -> StaffMember | None:
        async with self._session() as session:
            model = await StaffRepository(session).get(staff_id)
            return model.to_domain() if model else None

    @db_retry
    async def find_staff_by_phone(self, phone: str) -> StaffMember | None:
        async with self._session() as session:
            model = await StaffRepository(session).find_by_phone(normalize_phone(phone))
            return model.to_domain() if model else None

    @db_retry
    async def get_provider_policy(self, provider_id: str) -> ProviderPolicy:
        async with self._session() as session:
            model = await ProviderPolicyRepository(session).get(provider_id)
            return model.to_domain() if model else ProviderPolicy(provider_id=provider_id)

    async def record_call_attempt(self, attempt: CallAttempt) -> None:
        async with self._session() as session:
            await CallAttemptRepository(session).create(
                CallAttemptModel(
                    shift_id=attempt.shift_id,
                    round=attempt.round,
                    staff_index=attempt.staff_index,
                    staff_id=attempt.staff_id,
                    outcome=attempt.outcome.value,
                    call_id=attempt.call_id,
                    error=attempt.error,
                    attempted_at=attempt.attempted_at,
                )
            )

    @db_retry
    async def list_call_attempts(self, shift_id: str) -> list[CallAttempt]:
        async with self._session() as session:
            models = await CallAttemptRepository(session).list_for_shift(shift_id)
            return [model.to_domain() for model in models]

    async def record_notification(self, notification: Notification) -> None:
        async with self._session() as session:
            await NotificationRepository(session).create(
                NotificationModel(
                    shift_id=notification.shift_id,
                    staff_id=notification.staff_id,
                    wave=notification.wave,
                    success=notification.success,
                    sent_at=notification.sent_at,
                )
            )

    @db_retry
    async def latest_offer_for_staff(self, staff_id: str) -> str | None:
        async with self._session() as session:
            repo = NotificationRepository(session)
            return await repo.latest_open_offer(staff_id) or await repo.latest_offer(staff_id)

    async def ping(self) -> bool:
        async with self._session() as session:
            await session.execute(text("SELECT 1"))
        return True
