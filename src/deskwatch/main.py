"""
Deskwatch SLA - Main Application
================================

SLA tracking and escalation engine for a help desk.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Watcher, services and DTOs
- Domain: Business calendar, calculator, classifier, entities
- Infrastructure: Database, locks, notification webhook, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from deskwatch.config import settings
from deskwatch.core import ApplicationException

# Infrastructure
from deskwatch.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)

# SLA Module
from deskwatch.sla.application import TicketStateWatcher, SLAAdminService, SLAQueryService
from deskwatch.sla.infrastructure import (
    SLAConfigManager, SLAScheduler, TicketLockRegistry,
    WebhookEscalationPublisher, LoggingEscalationPublisher, sqlalchemy_uow_factory
)
from deskwatch.sla.interfaces import sla_router

# Shared
from deskwatch.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)
from deskwatch.shared.infrastructure.grafana import get_grafana_exporter
from deskwatch.shared.infrastructure.logging import setup_logging, get_logger, log_latency

logger = get_logger(__name__)


def register_sla_services(
    app: FastAPI,
    watcher: TicketStateWatcher,
    admin: SLAAdminService,
    query: SLAQueryService,
    scheduler: Optional[SLAScheduler] = None
) -> None:
    """Expose SLA services to the controllers through ``app.state``."""
    app.state.sla_watcher = watcher
    app.state.sla_admin = admin
    app.state.sla_query = query
    app.state.sla_scheduler = scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration and watch it for changes
    4. Seed empty rule / calendar tables from the configuration
    5. Wire the ticket state watcher
    6. Start the SLA tick scheduler

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Stop config watcher
    3. Close notification client
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    # Create tables (for development - use Alembic in production)
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    config_manager = SLAConfigManager()
    config = config_manager.load(settings.sla_config_path)
    config_manager.start_watching()

    lock_registry = TicketLockRegistry(timeout_seconds=settings.sla_lock_timeout_seconds)
    uow_factory = sqlalchemy_uow_factory(get_session_maker(), lock_registry)

    admin = SLAAdminService(uow_factory)
    try:
        await admin.seed_from_config(config)
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Could not seed SLA configuration tables", extra={"error": str(e)})

    if settings.notification_webhook_url:
        publisher = WebhookEscalationPublisher(
            settings.notification_webhook_url,
            timeout_seconds=settings.notification_timeout_seconds
        )
    else:
        logger.info("Notification webhook not configured - escalations are logged only")
        publisher = LoggingEscalationPublisher()

    watcher = TicketStateWatcher(
        uow_factory,
        publisher,
        config_manager,
        max_retries=settings.sla_lock_max_retries,
        backoff_seconds=settings.sla_lock_backoff_seconds
    )
    exporter = get_grafana_exporter()

    async def sla_tick_job():
        """Background SLA tick."""
        with log_latency(logger, "sla_tick"):
            summary = await watcher.tick()
        await exporter.export_tick_metrics(summary.to_dict())

    scheduler = None
    if settings.sla_evaluation_interval > 0:
        scheduler = SLAScheduler(interval_seconds=settings.sla_evaluation_interval)
        await scheduler.start(sla_tick_job)

    register_sla_services(app, watcher, admin, SLAQueryService(uow_factory), scheduler)
    logger.info("SLA engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA engine")

    if scheduler:
        await scheduler.stop()
    config_manager.stop_watching()
    await publisher.close()
    await close_database()

    logger.info("SLA engine shutdown complete")


def create_app(lifespan_handler: Optional[Callable] = lifespan) -> FastAPI:
    """Build the FastAPI application; tests pass ``lifespan_handler=None``."""
    app = FastAPI(
        title="Deskwatch SLA API",
        description="""
    ## Help-desk SLA tracking and escalation engine

    Measures how long each ticket has been waiting for a first response and
    for resolution, against per-priority targets, in wall-clock or business
    minutes and net of pause periods.

    **Ticket events:** `POST /sla/tickets`, `/sla/tickets/{id}/first-response`,
    `/status`, `/priority`, `/pause`, `/resume`

    **Queries:** `GET /sla/tickets/{id}`, `GET /sla/tickets/{id}/history`

    **Administration:** `/sla/rules`, `/sla/business-hours`, `/sla/pause-periods`

    **Evaluation:** `POST /sla/evaluate` runs one tick on demand; the scheduler
    runs it every `SLA_EVALUATION_INTERVAL` seconds.
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan_handler
    )
    app.state.settings = settings

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(sla_router)
    app.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/", root, methods=["GET"], tags=["Root"])
    return app


async def health_check(request: Request):
    """Health check endpoint for load balancers and orchestrators."""
    scheduler = getattr(request.app.state, "sla_scheduler", None)
    watcher = getattr(request.app.state, "sla_watcher", None)
    return {
        "status": "healthy" if watcher is not None else "starting",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "sla_engine": "ready" if watcher is not None else "not_initialized",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        }
    }


async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "POST /sla/tickets - Start SLA tracking for a ticket",
                    "GET /sla/tickets/{id} - Get ticket SLA state",
                    "GET /sla/tickets/{id}/history - Get ticket SLA history",
                    "POST /sla/evaluate - Run one SLA tick",
                ]
            }
        }
    }


app = create_app()


def run() -> None:
    """Development entry point."""
    import uvicorn

    uvicorn.run(
        "deskwatch.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )


if __name__ == "__main__":
    run()
