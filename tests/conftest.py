"""Pytest configuration and fixtures for shift escalation tests."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Set test environment
os.environ["SHIFT_ENV"] = "test"
os.environ["SHIFT_DEBUG"] = "true"
os.environ["SHIFT_STORE__BACKEND"] = "memory"
os.environ["SHIFT_DATABASE__URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SHIFT_TELEPHONY__WEBHOOKS__VALIDATE_SIGNATURES"] = "false"

from shift_escalation.api.rate_limits import limiter  # noqa: E402
from shift_escalation.api.webhook_security import (  # noqa: E402
    WebhookSecurityConfig,
    WebhookSecurityManager,
)
from shift_escalation.config import (  # noqa: E402
    EscalationSettings,
    Settings,
    StoreSettings,
    TelephonySettings,
    TwilioSettings,
    get_settings,
)
from shift_escalation.core.retry import reset_circuit_breakers  # noqa: E402
from shift_escalation.dependencies import (  # noqa: E402
    get_app_settings,
    get_escalation_orchestrator,
    get_webhook_security,
    reset_dependencies,
)
from shift_escalation.escalation.orchestrator import (  # noqa: E402
    EscalationOrchestrator,
    reset_orchestrator,
    set_orchestrator,
)
from shift_escalation.escalation.queue import InMemoryWorkQueue  # noqa: E402
from shift_escalation.integrations.sms import MockSMSGateway, reset_sms_gateway  # noqa: E402
from shift_escalation.integrations.voice import (  # noqa: E402
    MockVoiceGateway,
    reset_voice_gateway,
)
from shift_escalation.integrations.voice.twilio import reset_pending_calls  # noqa: E402
from shift_escalation.models import Shift, StaffMember  # noqa: E402
from shift_escalation.store.memory import MemoryShiftStore  # noqa: E402


NOW = datetime(2025, 10, 20, 9, 0)
PROVIDER_ID = "provider-1"
SHIFT_ID = "shift-1"


class FakeClock:
    """Controllable clock for the work queue."""

    def __init__(self, start: datetime = NOW) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def phone_for(n: int) -> str:
    return f"+6140000000{n}"


def make_staff(n: int, **overrides) -> StaffMember:
    values = {
        "id": f"staff-{n}",
        "provider_id": PROVIDER_ID,
        "first_name": ["Amy", "Ben", "Cara", "Dev", "Eli"][n - 1],
        "last_name": "Nguyen",
        "phone": phone_for(n),
    }
    values.update(overrides)
    return StaffMember(**values)


def make_shift(**overrides) -> Shift:
    values = {
        "id": SHIFT_ID,
        "provider_id": PROVIDER_ID,
        "patient_id": "patient-1",
        "scheduled_at": NOW + timedelta(hours=6),
        "pool_staff_ids": ["staff-1", "staff-2", "staff-3"],
        "duration_minutes": 90,
        "patient_first_name": "Oliver",
        "patient_last_name": "Smith",
        "suburb": "Fitzroy",
    }
    values.update(overrides)
    return Shift(**values)


# ============================================================================
# Global state
# ============================================================================


def _reset_globals() -> None:
    get_settings.cache_clear()
    reset_circuit_breakers()
    reset_orchestrator()
    reset_sms_gateway()
    reset_voice_gateway()
    reset_pending_calls()
    reset_dependencies()
    limiter.reset()


@pytest.fixture(autouse=True)
def reset_singletons():
    """Circuit breakers, gateways and the orchestrator are process-wide."""
    _reset_globals()
    yield
    _reset_globals()


# ============================================================================
# Escalation fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def escalation_settings() -> EscalationSettings:
    """Defaults with transport backoff disabled so retries do not sleep.

    Shift times in the fixtures are UTC, matching the fake clock.
    """
    return EscalationSettings(
        sms_backoff_seconds=0,
        call_backoff_seconds=0,
        timezone="UTC",
    )


@pytest.fixture
def settings(escalation_settings) -> Settings:
    return Settings(
        escalation=escalation_settings,
        store=StoreSettings(backend="memory"),
    )


@pytest.fixture
def store() -> MemoryShiftStore:
    """Provider with three active staff and one open shift."""
    store = MemoryShiftStore()
    store.add_staff(make_staff(1), make_staff(2), make_staff(3))
    store.add_shift(make_shift())
    return store


@pytest.fixture
def sms() -> MockSMSGateway:
    return MockSMSGateway()


@pytest.fixture
def voice() -> MockVoiceGateway:
    return MockVoiceGateway()


@pytest.fixture
def queue(clock) -> InMemoryWorkQueue:
    return InMemoryWorkQueue(
        workers=1,
        poll_interval=0.01,
        redelivery_backoff=0,
        clock=clock.now,
    )


@pytest.fixture
def orchestrator(store, queue, sms, voice, settings) -> EscalationOrchestrator:
    return EscalationOrchestrator(
        store=store,
        queue=queue,
        sms_gateway=sms,
        voice_gateway=voice,
        settings=settings,
    )


# ============================================================================
# Database fixtures
# ============================================================================


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine with all tables, fresh per test."""
    from shift_escalation.db.session import create_test_engine

    engine = await create_test_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_store(db_engine):
    from shift_escalation.db.session import create_session_factory
    from shift_escalation.store.sql import SQLShiftStore

    store = SQLShiftStore(create_session_factory(db_engine))
    await store.add_staff(make_staff(1), make_staff(2), make_staff(3))
    await store.add_shift(make_shift())
    return store


# ============================================================================
# API fixtures
# ============================================================================

PUBLIC_URL = "https://escalation.example.com"
AUTH_TOKEN = "test-auth-token"


@pytest.fixture
def api_settings(escalation_settings) -> Settings:
    return Settings(
        escalation=escalation_settings,
        store=StoreSettings(backend="memory"),
        telephony=TelephonySettings(
            twilio=TwilioSettings(auth_token=AUTH_TOKEN, webhook_url=PUBLIC_URL),
        ),
    )


@pytest.fixture
def security() -> WebhookSecurityManager:
    """Signature checks off; test_webhook_security covers the enforced path."""
    return WebhookSecurityManager(WebhookSecurityConfig(validate_signatures=False))


@pytest.fixture
def app(orchestrator, api_settings, security):
    from shift_escalation.main import create_app

    app = create_app()
    set_orchestrator(orchestrator)
    app.dependency_overrides[get_escalation_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_app_settings] = lambda: api_settings
    app.dependency_overrides[get_webhook_security] = lambda: security
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
