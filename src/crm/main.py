"""FastAPI application factory.

Creates the app with logging middleware, CORS, lifespan events for
database initialization and pipeline service wiring, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.crm.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.crm.api.v1.router import router as v1_router
from src.crm.config import get_settings
from src.crm.core.database import close_db, init_db, user_session
from src.crm.pipeline.board import BoardController
from src.crm.pipeline.contacts import ContactService
from src.crm.pipeline.metrics import DashboardService
from src.crm.pipeline.properties import PropertyService
from src.crm.pipeline.repository import PipelineRepository
from src.crm.pipeline.sales import SaleRecorder
from src.crm.pipeline.stages import StageStore


def wire_pipeline(app: FastAPI, repository, sale_recorder: SaleRecorder | None = None) -> None:
    """Attach the pipeline services to app.state over one repository."""
    sale_recorder = sale_recorder or SaleRecorder(get_settings().won_stage_names())
    app.state.stage_store = StageStore(repository)
    app.state.board_controller = BoardController(repository, sale_recorder)
    app.state.contact_service = ContactService(repository, sale_recorder)
    app.state.property_service = PropertyService(repository)
    app.state.dashboard_service = DashboardService(repository)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    wire_pipeline(app, PipelineRepository(session_factory=user_session))
    log.info(
        "pipeline_initialized",
        environment=settings.ENVIRONMENT.value,
        won_stages=sorted(settings.won_stage_names()),
    )

    yield

    await close_db()
    log.info("shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Corretor CRM API",
        version="0.1.0",
        description="Sales pipeline CRM for real-estate brokers",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router)

    return app


# Module-level app for uvicorn
app = create_app()
