"""Shift record store.

Backends:
- sql: SQLAlchemy async (SQLite for development, PostgreSQL in production)
- memory: In-process dictionaries, for tests and local demos
"""
from __future__ import annotations

from shift_escalation.config import Settings
from shift_escalation.core.exceptions import ConfigurationError
from shift_escalation.store.base import ShiftStore
from shift_escalation.store.memory import MemoryShiftStore


def create_store(settings: Settings) -> ShiftStore:
    """Build the store selected by ``settings.store.backend``."""
    backend = settings.store.backend.lower()

    if backend == "memory":
        return MemoryShiftStore()

    if backend == "sql":
        from shift_escalation.db.session import get_session_factory
        from shift_escalation.store.sql import SQLShiftStore

        return SQLShiftStore(get_session_factory())

    raise ConfigurationError(
        f"Unknown store backend '{backend}'",
        details={"backend": backend},
    )


__all__ = ["ShiftStore", "MemoryShiftStore", "create_store"]
