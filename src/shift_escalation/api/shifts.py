"""Shift escalation API endpoints.

Start, inspect and cancel escalation cycles, and accept a shift from the
web link included in wave SMS.
"""

from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shift_escalation.api.rate_limits import RateLimits, limiter
from shift_escalation.core.logging import get_logger
from shift_escalation.dependencies import OrchestratorDep
from shift_escalation.models import ClaimChannel

log = get_logger(__name__)

router = APIRouter(prefix="/shifts")


class EscalationStartResponse(BaseModel):
    shift_id: str
    started: bool


class EscalationCancelResponse(BaseModel):
    shift_id: str
    removed: int


class AcceptRequest(BaseModel):
    """Web acceptance of an offered shift."""

    staff_id: str = Field(..., min_length=1)


class AcceptResponse(BaseModel):
    accepted: bool
    shift_id: str
    staff_id: str
    reason: str | None = None


@router.post("/{shift_id}/escalation", response_model=EscalationStartResponse)
@limiter.limit(RateLimits.WRITE)
async def start_escalation(
    request: Request,
    shift_id: str,
    orchestrator: OrchestratorDep,
) -> JSONResponse:
    """Start an escalation cycle for an open shift.

    Returns 202 when a cycle was started, 200 when the shift is not open
    or a cycle is already running.
    """
    started = await orchestrator.start_escalation(shift_id)
    log.info("Escalation start requested", shift_id=shift_id, started=started)

    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED if started else status.HTTP_200_OK,
        content={"shift_id": shift_id, "started": started},
    )


@router.get("/{shift_id}/escalation")
@limiter.limit(RateLimits.READ)
async def get_escalation_status(
    request: Request,
    shift_id: str,
    orchestrator: OrchestratorDep,
) -> dict[str, Any]:
    """Shift status, current pool order, pending escalation steps and call attempts."""
    return await orchestrator.get_status(shift_id)


@router.delete("/{shift_id}/escalation", response_model=EscalationCancelResponse)
@limiter.limit(RateLimits.WRITE)
async def cancel_escalation(
    request: Request,
    shift_id: str,
    orchestrator: OrchestratorDep,
) -> EscalationCancelResponse:
    removed = await orchestrator.cancel_escalation(shift_id)
    return EscalationCancelResponse(shift_id=shift_id, removed=removed)


@router.post("/{shift_id}/accept", response_model=AcceptResponse)
@limiter.limit(RateLimits.ACCEPT)
async def accept_shift(
    request: Request,
    shift_id: str,
    body: AcceptRequest,
    orchestrator: OrchestratorDep,
) -> AcceptResponse:
    """Claim a shift for a staff member.

    A lost race is not an error: the response carries ``accepted=False``
    and the reason.
    """
    result = await orchestrator.claim(shift_id, body.staff_id, ClaimChannel.WEB)
    return AcceptResponse(**result.to_dict())
