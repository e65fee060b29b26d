"""FastAPI application entry point: wires everything together.

Usage:
    python -m bustapaga.main

Startup fails with ConfigurationError when GATEWAY_PROVIDER=gemini and
GEMINI_API_KEY is not set.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from bustapaga.api.routes import router
from bustapaga.config import settings
from bustapaga.db.engine import db_lifespan
from bustapaga.gateway.service import PayslipGateway
from bustapaga.llm.factory import build_model_client
from bustapaga.observability.audit import audit_on_event
from bustapaga.observability.events import emit, start_event_system, stop_event_system, subscribe
from bustapaga.schemas.events import EventType, SystemEvent

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting bustapaga (env=%s)", settings.environment)

    # 1. Model client first: a missing API key must stop startup
    model = build_model_client()
    app.state.gateway = PayslipGateway(model)

    # 2. Database
    async with db_lifespan():
        logger.info("Database initialized")

        # 3. Event system + audit trail
        await start_event_system()
        subscribe(audit_on_event)
        logger.info("Audit logging subscriber registered")
        await emit(SystemEvent(
            event_type=EventType.SYSTEM_STARTUP,
            data={"provider": settings.gateway.provider, "chat_mode": settings.gateway.chat_mode},
            source_module="main",
        ))

        try:
            yield
        finally:
            logger.info("Shutting down bustapaga...")

            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            await model.close()
            logger.info("Model client closed")

            await stop_event_system()
            logger.info("Event system stopped")

    logger.info("bustapaga shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Bustapaga API",
    description="Analisi, confronto e consulenza sulle buste paga italiane",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "provider": settings.gateway.provider,
        "chat_mode": settings.gateway.chat_mode,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "bustapaga.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
