"""SQL persistence for shifts, staff, provider policies, escalation audit rows
and queued work items."""
from shift_escalation.db.base import Base, TimestampMixin, UUIDMixin
from shift_escalation.db.session import (
    close_db,
    create_session_factory,
    create_test_engine,
    get_db_context,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "close_db",
    "create_session_factory",
    "create_test_engine",
    "get_db_context",
    "get_engine",
    "get_session_factory",
    "init_db",
]
