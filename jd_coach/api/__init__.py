"""
FastAPI application factory and API package.

Run with:
    uvicorn jd_coach.api:create_app --factory --port 8000

Or via main.py:
    python -m jd_coach --serve
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jd_coach.config import Settings, get_settings
from jd_coach.api.routes import health_router, jd_router, session_router
from jd_coach.api.websocket import SessionBroadcaster
from jd_coach.orchestration.copilot import CopilotService, build_copilot

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, copilot: CopilotService | None = None) -> FastAPI:
    """Application factory — create and configure the FastAPI instance."""
    settings = settings or get_settings()
    copilot = copilot or build_copilot(settings)

    broadcaster = SessionBroadcaster()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        broadcaster.set_loop(asyncio.get_running_loop())
        logger.info(f"Starting {settings.app_name} API")
        yield
        # Queued evidence must not be dropped on teardown
        await copilot.flush_all()
        logger.info(f"{settings.app_name} API stopped")

    application = FastAPI(
        title="JD Fit Copilot API",
        description="Live interview evidence scoring against a job description",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # The desktop UI calls the API from a local origin
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    copilot.bus.subscribe_all(broadcaster)
    application.state.copilot = copilot
    application.state.broadcaster = broadcaster

    application.include_router(health_router, tags=["Health"])
    application.include_router(jd_router, prefix="/api", tags=["Job description"])
    application.include_router(session_router, prefix="/api/sessions", tags=["Sessions"])

    return application
