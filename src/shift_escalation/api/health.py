"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from shift_escalation import __version__
from shift_escalation.api.rate_limits import RateLimits, limiter
from shift_escalation.core.logging import get_logger
from shift_escalation.core.retry import get_circuit_breaker_status
from shift_escalation.dependencies import OrchestratorDep, SettingsDep
from shift_escalation.escalation.orchestrator import EscalationOrchestrator

log = get_logger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    instance_id: str
    environment: str
    checks: dict[str, Any]


@router.get("/health")
@limiter.limit(RateLimits.HEALTH)
async def health_check(
    request: Request,
    settings: SettingsDep,
    orchestrator: OrchestratorDep,
) -> HealthResponse:
    """Store reachability, queue counters and transport circuit states."""
    checks: dict[str, Any] = {
        "api": "ok",
        "store": await _check_store(orchestrator),
        "queue": await orchestrator.queue.get_status(),
        "circuit_breakers": get_circuit_breaker_status(),
    }

    return HealthResponse(
        status=_determine_overall_status(checks),
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        instance_id=settings.instance_id,
        environment=settings.environment,
        checks=checks,
    )


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Process is up; touches nothing else."""
    return {"status": "alive"}


async def _check_store(orchestrator: EscalationOrchestrator) -> dict[str, Any]:
    try:
        await orchestrator.store.ping()
        return {"status": "ok", "backend": type(orchestrator.store).__name__}
    except Exception as e:
        log.error("Store health check failed", error=str(e))
        return {"status": "error", "message": str(e)}


def _determine_overall_status(checks: dict[str, Any]) -> str:
    """healthy, degraded (a transport circuit is open) or unhealthy (store down)."""
    if checks["store"].get("status") != "ok":
        return "unhealthy"

    breakers = checks.get("circuit_breakers", {})
    if any(b.get("state") == "open" for b in breakers.values()):
        return "degraded"

    return "healthy"
