"""Tests for the in-memory shift store."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW, PROVIDER_ID, SHIFT_ID, make_shift
from shift_escalation.config import Settings, StoreSettings
from shift_escalation.core.exceptions import ConfigurationError, ShiftNotFoundError
from shift_escalation.models import Notification, ProviderPolicy, ShiftStatus
from shift_escalation.store import create_store
from shift_escalation.store.memory import MemoryShiftStore


class TestCompareAndSet:
    """Test conditional status updates."""

    @pytest.mark.asyncio
    async def test_matching_status_updates(self, store):
        changed = await store.compare_and_set_status(
            SHIFT_ID, ShiftStatus.OPEN, ShiftStatus.SCHEDULED, assigned_staff_id="staff-1"
        )

        assert changed
        shift = await store.get_shift(SHIFT_ID)
        assert shift.status == ShiftStatus.SCHEDULED
        assert shift.assigned_staff_id == "staff-1"

    @pytest.mark.asyncio
    async def test_stale_status_rejected(self, store):
        await store.compare_and_set_status(SHIFT_ID, ShiftStatus.OPEN, ShiftStatus.CANCELLED)

        changed = await store.compare_and_set_status(
            SHIFT_ID, ShiftStatus.OPEN, ShiftStatus.SCHEDULED, assigned_staff_id="staff-1"
        )

        assert not changed
        assert (await store.get_shift(SHIFT_ID)).status == ShiftStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_unknown_shift(self, store):
        with pytest.raises(ShiftNotFoundError):
            await store.compare_and_set_status("missing", ShiftStatus.OPEN, ShiftStatus.SCHEDULED)

    @pytest.mark.asyncio
    async def test_status_reason_keeps_status(self, store):
        assert await store.set_status_reason(SHIFT_ID, "no staff pool configured")

        shift = await store.get_shift(SHIFT_ID)
        assert shift.status == ShiftStatus.OPEN
        assert shift.status_reason == "no staff pool configured"

    @pytest.mark.asyncio
    async def test_status_reason_needs_expected_status(self, store):
        await store.compare_and_set_status(
            SHIFT_ID, ShiftStatus.OPEN, ShiftStatus.SCHEDULED, assigned_staff_id="staff-1"
        )

        assert not await store.set_status_reason(SHIFT_ID, "no staff pool configured")
        assert (await store.get_shift(SHIFT_ID)).status_reason is None


class TestReads:
    """Test lookups and copies."""

    @pytest.mark.asyncio
    async def test_get_shift_returns_copy(self, store):
        shift = await store.get_shift(SHIFT_ID)
        shift.pool_staff_ids.append("staff-9")
        shift.status = ShiftStatus.CANCELLED

        stored = await store.get_shift(SHIFT_ID)
        assert stored.pool_staff_ids == ["staff-1", "staff-2", "staff-3"]
        assert stored.status == ShiftStatus.OPEN

    @pytest.mark.asyncio
    async def test_find_staff_by_local_number(self, store):
        member = await store.find_staff_by_phone("0400 000 002")

        assert member is not None
        assert member.id == "staff-2"

    @pytest.mark.asyncio
    async def test_list_active_staff(self, store):
        store.update_staff("staff-1", active=False)

        staff = await store.list_active_staff(PROVIDER_ID)

        assert sorted(m.id for m in staff) == ["staff-2", "staff-3"]

    @pytest.mark.asyncio
    async def test_policy_default(self, store):
        policy = await store.get_provider_policy(PROVIDER_ID)

        assert policy == ProviderPolicy(provider_id=PROVIDER_ID)

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping()


class TestLatestOffer:
    """Test which shift an SMS reply refers to."""

    @pytest.mark.asyncio
    async def test_no_offer(self, store):
        assert await store.latest_offer_for_staff("staff-1") is None

    @pytest.mark.asyncio
    async def test_prefers_open_shift(self, store):
        store.add_shift(make_shift(id="shift-2", scheduled_at=NOW + timedelta(hours=8)))
        await store.record_notification(Notification(shift_id=SHIFT_ID, staff_id="staff-1", wave=1))
        await store.record_notification(Notification(shift_id="shift-2", staff_id="staff-1", wave=1))
        store.update_shift("shift-2", status=ShiftStatus.SCHEDULED)

        assert await store.latest_offer_for_staff("staff-1") == SHIFT_ID

    @pytest.mark.asyncio
    async def test_falls_back_to_closed_shift(self, store):
        await store.record_notification(Notification(shift_id=SHIFT_ID, staff_id="staff-1", wave=1))
        store.update_shift(SHIFT_ID, status=ShiftStatus.SCHEDULED)

        assert await store.latest_offer_for_staff("staff-1") == SHIFT_ID

    @pytest.mark.asyncio
    async def test_failed_sms_is_not_an_offer(self, store):
        await store.record_notification(
            Notification(shift_id=SHIFT_ID, staff_id="staff-1", wave=1, success=False)
        )

        assert await store.latest_offer_for_staff("staff-1") is None


class TestCreateStore:
    def test_memory_backend(self):
        store = create_store(Settings(store=StoreSettings(backend="memory")))

        assert isinstance(store, MemoryShiftStore)

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            create_store(Settings(store=StoreSettings(backend="redis")))
