"""Effective escalation policy per provider."""
from __future__ import annotations

from dataclasses import dataclass

from shift_escalation.config import EscalationSettings
from shift_escalation.models import ProviderPolicy
from shift_escalation.store.base import ShiftStore


@dataclass(frozen=True)
class EffectivePolicy:
    """Provider overrides merged over the service defaults."""

    provider_id: str
    outbound_enabled: bool
    max_rounds: int
    inter_call_delay_seconds: float
    inter_round_delay_seconds: float
    wait_minutes_after_waves: int
    call_message_template: str | None
    privacy_mode: bool

    @classmethod
    def merge(cls, policy: ProviderPolicy, defaults: EscalationSettings) -> "EffectivePolicy":
        def pick(value, default):
            return default if value is None else value

        return cls(
            provider_id=policy.provider_id,
            outbound_enabled=pick(policy.outbound_enabled, defaults.outbound_enabled),
            max_rounds=max(1, pick(policy.max_rounds, defaults.max_rounds)),
            inter_call_delay_seconds=pick(
                policy.inter_call_delay_seconds, defaults.inter_call_delay_seconds
            ),
            inter_round_delay_seconds=pick(
                policy.inter_round_delay_seconds, defaults.inter_round_delay_seconds
            ),
            wait_minutes_after_waves=pick(
                policy.wait_minutes_after_waves, defaults.wait_minutes_after_waves
            ),
            call_message_template=policy.call_message_template or None,
            privacy_mode=pick(policy.privacy_mode, defaults.privacy_mode),
        )


class PolicyResolver:
    """Reads provider policies from the store and applies defaults."""

    def __init__(self, store: ShiftStore, defaults: EscalationSettings) -> None:
        self._store = store
        self._defaults = defaults

    async def resolve(self, provider_id: str) -> EffectivePolicy:
        policy = await self._store.get_provider_policy(provider_id)
        return EffectivePolicy.merge(policy, self._defaults)
