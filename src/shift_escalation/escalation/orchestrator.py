"""Escalation orchestrator.

Wires the pool resolver, state guard, wave and call schedulers, the
claim service and the work queue together, and is the single object the
API layer talks to.

Usage:
    orchestrator = EscalationOrchestrator(store, queue, sms, voice, settings)
    await orchestrator.start()
    await orchestrator.start_escalation("shift-1")
    result = await orchestrator.claim("shift-1", "staff-2", ClaimChannel.SMS)
"""
from __future__ import annotations

from typing import Any

from shift_escalation.config import Settings, get_settings
from shift_escalation.core.logging import get_logger
from shift_escalation.escalation.calls import OutboundCallScheduler
from shift_escalation.escalation.claim import CancellationService, ClaimService
from shift_escalation.escalation.guard import StateGuard
from shift_escalation.escalation.notifier import Notifier
from shift_escalation.escalation.policy import PolicyResolver
from shift_escalation.escalation.pool import StaffPoolResolver
from shift_escalation.escalation.queue import InMemoryWorkQueue, WorkItem, WorkQueue
from shift_escalation.escalation.waves import WaveScheduler
from shift_escalation.integrations.sms.base import SMSGateway
from shift_escalation.integrations.voice.base import VoiceGateway
from shift_escalation.models import ClaimChannel, ClaimResult, WorkItemKind
from shift_escalation.store.base import ShiftStore

log = get_logger(__name__)


class EscalationOrchestrator:
    """Runs escalation cycles for open shifts."""

    def __init__(
        self,
        store: ShiftStore,
        queue: WorkQueue,
        sms_gateway: SMSGateway,
        voice_gateway: VoiceGateway,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        escalation = settings.escalation

        self.store = store
        self.queue = queue
        self.notifier = Notifier(sms_gateway, voice_gateway, escalation)
        self.resolver = StaffPoolResolver(store)
        self.guard = StateGuard(store)
        self.policies = PolicyResolver(store, escalation)
        self.cancellation = CancellationService(queue)
        self.claims = ClaimService(store, self.cancellation, self.notifier)
        self.calls = OutboundCallScheduler(
            store, queue, self.resolver, self.guard, self.notifier, self.policies, self.claims
        )
        self.waves = WaveScheduler(
            store,
            queue,
            self.resolver,
            self.guard,
            self.notifier,
            self.policies,
            self.calls,
            escalation,
        )

        queue.set_handler(self.execute)

    # ========== Lifecycle ==========

    async def start(self) -> None:
        await self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()

    async def close(self) -> None:
        await self.stop()
        await self.notifier.sms_gateway.close()
        await self.notifier.voice_gateway.close()
        await self.store.close()

    # ========== Operations ==========

    async def start_escalation(self, shift_id: str) -> bool:
        """Begin a new escalation cycle for an open shift.

        Returns:
            False if the shift is not open or a cycle is already running

        Raises:
            ShiftNotFoundError: Unknown shift
        """
        shift = await self.store.get_shift(shift_id)
        if not shift.is_open:
            log.info(
                "Escalation not started, shift not open",
                shift_id=shift_id,
                status=shift.status.value,
            )
            return False

        if await self.queue.has_live_items(shift_id):
            log.info("Escalation already in progress", shift_id=shift_id)
            return False

        await self.queue.forget_shift(shift_id)
        return await self.waves.start(shift)

    async def execute(self, item: WorkItem) -> None:
        """Work queue handler."""
        if item.kind == WorkItemKind.SMS_WAVE:
            await self.waves.handle_wave(item)
        elif item.kind == WorkItemKind.OUTBOUND_CALL:
            await self.calls.handle_call(item)
        else:
            log.error("Unknown work item kind", key=item.key, kind=str(item.kind))

    async def claim(
        self,
        shift_id: str,
        staff_id: str,
        channel: ClaimChannel = ClaimChannel.WEB,
    ) -> ClaimResult:
        """Entry point for every acceptance channel."""
        return await self.claims.claim(shift_id, staff_id, channel)

    async def cancel_escalation(self, shift_id: str) -> int:
        """Stop a running cycle without touching the shift status."""
        await self.store.get_shift(shift_id)
        return await self.cancellation.cancel(shift_id)

    async def get_status(self, shift_id: str) -> dict[str, Any]:
        shift = await self.store.get_shift(shift_id)
        pending = await self.queue.pending_for_shift(shift_id)
        attempts = await self.store.list_call_attempts(shift_id)
        return {
            "shift": shift.to_dict(),
            "resolved_pool": await self.resolver.resolve_ids(shift_id),
            "pending_items": [item.to_dict() for item in pending],
            "call_attempts": [attempt.to_dict() for attempt in attempts],
        }


def create_queue(settings: Settings) -> WorkQueue:
    """Work queue matching the store: durable rows for sql, a heap for memory."""
    options = settings.queue
    if settings.store.backend.lower() == "sql":
        from shift_escalation.db.session import get_session_factory
        from shift_escalation.escalation.sql_queue import SQLWorkQueue

        return SQLWorkQueue(
            get_session_factory(),
            workers=options.workers,
            poll_interval=options.poll_interval_seconds,
            max_delivery_attempts=options.max_delivery_attempts,
            redelivery_backoff=options.redelivery_backoff_seconds,
            lease_seconds=options.lease_seconds,
            instance_id=settings.instance_id or "local",
        )

    return InMemoryWorkQueue(
        workers=options.workers,
        poll_interval=options.poll_interval_seconds,
        max_delivery_attempts=options.max_delivery_attempts,
        redelivery_backoff=options.redelivery_backoff_seconds,
    )


# Singleton instance
_orchestrator: EscalationOrchestrator | None = None


def get_orchestrator() -> EscalationOrchestrator:
    """Get the process-wide orchestrator built from settings."""
    global _orchestrator

    if _orchestrator is None:
        from shift_escalation.integrations.sms import get_sms_gateway
        from shift_escalation.integrations.voice import get_voice_gateway
        from shift_escalation.store import create_store

        settings = get_settings()
        _orchestrator = EscalationOrchestrator(
            store=create_store(settings),
            queue=create_queue(settings),
            sms_gateway=get_sms_gateway(),
            voice_gateway=get_voice_gateway(),
            settings=settings,
        )

    return _orchestrator


def set_orchestrator(orchestrator: EscalationOrchestrator) -> None:
    global _orchestrator
    _orchestrator = orchestrator


def reset_orchestrator() -> None:
    """Reset the orchestrator (for testing)."""
    global _orchestrator
    _orchestrator = None
