"""FastAPI application for the shift escalation service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from shift_escalation import __version__
from shift_escalation.api import health, shifts, sms_webhooks, voice_webhooks
from shift_escalation.api.rate_limits import limiter
from shift_escalation.config import get_settings, require_valid_settings
from shift_escalation.core.exceptions import EscalationError
from shift_escalation.core.logging import get_logger, setup_logging
from shift_escalation.db import close_db, init_db
from shift_escalation.escalation.orchestrator import get_orchestrator

log = get_logger(__name__)


def _error_slug(status_code: int) -> str:
    """``403`` -> ``"forbidden"``, ``404`` -> ``"not_found"``."""
    try:
        phrase = HTTPStatus(status_code).phrase
    except ValueError:
        return "error"
    return phrase.lower().replace(" ", "_").replace("-", "_")


def register_exception_handlers(app: FastAPI) -> None:
    """Every error leaves the API as ``{"error", "message", ...}``."""

    @app.exception_handler(EscalationError)
    async def escalation_error(request: Request, exc: EscalationError) -> JSONResponse:
        log.warning(
            "Request failed",
            error_code=exc.error_code,
            error=exc.message,
            path=request.url.path,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RateLimitExceeded)
    async def rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit_exceeded",
                "message": f"Rate limit exceeded: {exc.detail}",
            },
        )

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {
                "field": ".".join(str(part) for part in error["loc"] if part != "body") or "request",
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={
                "error": "validation_error",
                "message": "Request validation failed",
                "details": details,
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": _error_slug(exc.status_code), "message": str(exc.detail)},
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled exception", path=request.url.path, method=request.method)
        message = str(exc) if get_settings().debug else "An internal error occurred"
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": message},
        )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging, open the store and run the queue workers."""
    settings = require_valid_settings()
    setup_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        instance_id=settings.instance_id,
    )
    log.info(
        "Shift escalation starting",
        version=__version__,
        environment=settings.environment,
        store=settings.store.backend,
        sms_provider=settings.integrations.sms.provider,
        voice_provider=settings.integrations.voice.provider,
    )

    uses_database = settings.store.backend == "sql"
    if uses_database:
        await init_db()

    orchestrator = get_orchestrator()
    await orchestrator.start()
    log.info("Escalation workers running", workers=settings.queue.workers)

    try:
        yield
    finally:
        log.info("Shift escalation stopping")
        await orchestrator.close()
        if uses_database:
            await close_db()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Shift Escalation",
        description="Fills open care shifts through SMS waves and outbound calls",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )
    app.state.limiter = limiter
    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(shifts.router, prefix="/api/v1", tags=["Shifts"])
    for webhooks in (sms_webhooks, voice_webhooks):
        app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "shift_escalation.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
