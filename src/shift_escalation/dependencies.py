"""FastAPI dependencies shared by the routers.

Usage:
    @router.post("/shifts/{shift_id}/claim")
    async def claim(shift_id: str, orchestrator: OrchestratorDep):
        ...

Tests swap any of these through ``app.dependency_overrides``.
"""

from __future__ import annotations

import threading
from typing import Annotated

from fastapi import Depends

from shift_escalation.api.webhook_security import (
    WebhookSecurityConfig,
    WebhookSecurityManager,
)
from shift_escalation.config import Settings, get_settings
from shift_escalation.escalation.orchestrator import (
    EscalationOrchestrator,
    get_orchestrator,
)

_lock = threading.Lock()
_security: WebhookSecurityManager | None = None


def get_app_settings() -> Settings:
    return get_settings()


def get_escalation_orchestrator() -> EscalationOrchestrator:
    return get_orchestrator()


def _build_security(settings: Settings) -> WebhookSecurityManager:
    twilio = settings.telephony.twilio
    webhooks = settings.telephony.webhooks
    return WebhookSecurityManager(
        WebhookSecurityConfig(
            validate_signatures=webhooks.validate_signatures,
            twilio_auth_token=twilio.auth_token,
            public_base_url=twilio.webhook_url,
            allowed_sources=list(webhooks.allowed_sources),
            trusted_proxies=list(webhooks.trusted_proxies),
        )
    )


def get_webhook_security() -> WebhookSecurityManager:
    """Process-wide manager, built from settings on first use."""
    global _security

    with _lock:
        if _security is None:
            _security = _build_security(get_settings())
        return _security


def reset_dependencies() -> None:
    global _security
    with _lock:
        _security = None


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
OrchestratorDep = Annotated[EscalationOrchestrator, Depends(get_escalation_orchestrator)]
WebhookSecurityDep = Annotated[WebhookSecurityManager, Depends(get_webhook_security)]
