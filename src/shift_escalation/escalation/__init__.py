"""Escalation core.

SMS waves, outbound call round-robin, state guard, claim and
cancellation, driven by a delay-capable work queue.
"""
from shift_escalation.escalation.queue import (
    InMemoryWorkQueue,
    PollingWorkQueue,
    WorkItem,
    WorkQueue,
    call_key,
    wave_key,
)

__all__ = [
    "InMemoryWorkQueue",
    "PollingWorkQueue",
    "WorkItem",
    "WorkQueue",
    "call_key",
    "wave_key",
]
