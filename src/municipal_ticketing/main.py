"""
Municipal Ticketing - Main Application
======================================

Complaint lifecycle engine for a municipal service desk.

Modules:
- Tickets: Status state machine, audit trail and notes
- SLA: Due dates, background sweep, overdue and compliance reporting
- Assignment: Staff ranking, assignment orchestration and workload

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and the state machine
- Infrastructure: Database, config watcher, scheduler, notification webhook
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration
from municipal_ticketing.config import settings

# Infrastructure
from municipal_ticketing.infrastructure.database import close_database, create_tables, init_database

# Module services
from municipal_ticketing.assignment.application import (
    AssignmentOrchestrator, WorkloadIndex, workload_counter
)
from municipal_ticketing.sla.application import SLAClock
from municipal_ticketing.sla.infrastructure import SLAConfigManager, SLAScheduler
from municipal_ticketing.tickets.application import TicketService

# Module Routers
from municipal_ticketing.assignment.interfaces import assignment_router
from municipal_ticketing.sla.interfaces import sla_router
from municipal_ticketing.tickets.interfaces import tickets_router

# Shared
from municipal_ticketing.shared.api import (
    CorrelationIDMiddleware, LoggingMiddleware, register_exception_handlers
)
from municipal_ticketing.shared.infrastructure.logging import get_logger, setup_logging
from municipal_ticketing.shared.infrastructure.notifications import (
    NotificationPublisher, NotificationQueue, WebhookNotificationDispatcher
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration and watch it for changes
    4. Start the notification queue
    5. Wire the module services onto app.state
    6. Start the SLA sweep scheduler

    SHUTDOWN (reverse order):
    1. Stop the scheduler
    2. Drain the notification queue and close the webhook client
    3. Stop the config watcher
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Municipal Ticketing", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()
    # Development convenience - use migrations in production
    await create_tables()

    logger.info("Loading SLA configuration")
    sla_config_manager = SLAConfigManager()
    sla_config_manager.load(settings.sla_config_path)
    sla_config_manager.start_watching()

    dispatcher = WebhookNotificationDispatcher()
    notification_queue = NotificationQueue(dispatcher)
    publisher = NotificationPublisher()
    publisher.subscribe(notification_queue)
    await notification_queue.start()

    sla_clock = SLAClock(sla_config_manager, publisher=publisher)

    # Store services in app state for dependency injection
    app.state.sla_config_manager = sla_config_manager
    app.state.notification_queue = notification_queue
    app.state.sla_clock = sla_clock
    app.state.ticket_service = TicketService(
        sla_policy=sla_clock,
        workload_factory=workload_counter,
        publisher=publisher,
    )
    app.state.assignment_orchestrator = AssignmentOrchestrator(publisher=publisher)
    app.state.workload_index = WorkloadIndex()

    sla_scheduler = None
    if settings.sla_sweep_interval > 0:
        sla_scheduler = SLAScheduler(interval_seconds=settings.sla_sweep_interval)
        await sla_scheduler.start(sla_clock.sweep)
    else:
        logger.info("SLA scheduler disabled")
    app.state.sla_scheduler = sla_scheduler

    logger.info("Municipal Ticketing started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Municipal Ticketing")

    if sla_scheduler:
        await sla_scheduler.stop()

    await notification_queue.stop()
    await dispatcher.close()

    sla_config_manager.stop_watching()

    await close_database()

    logger.info("Municipal Ticketing shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware, error mapping and routers."""
    app = FastAPI(
        title="Municipal Ticketing API",
        description="""
        ## Complaint Lifecycle Engine

        ### Tickets
        - `POST /tickets` - File a complaint
        - `POST /tickets/{id}/transitions` - Change status
        - `GET /tickets/{id}/history` - Status history

        ### SLA
        - `GET /sla/overdue`, `GET /sla/at-risk` - Queues
        - `GET /sla/compliance` - On-time resolution rate
        - `POST /sla/tickets/{id}/recompute` - Audited due-date recompute

        ### Assignment
        - `GET /assignments/tickets/{id}/suggestions` - Ranked staff
        - `POST /assignments/tickets/{id}/assign` - Assign
        - `POST /assignments/tickets/{id}/reassign` - Reassign
        - `GET /assignments/workload` - Staff workload

        Every request carries `X-Actor-Id` and `X-Actor-Role` set by the auth gateway.
        A `409` response means someone else acted first: refresh and retry.
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    register_exception_handlers(app)

    # === Include Module Routers ===
    app.include_router(tickets_router)
    app.include_router(sla_router)
    app.include_router(assignment_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports the SLA configuration, scheduler and notification queue state.
        """
        state = request.app.state
        config_manager = getattr(state, "sla_config_manager", None)
        scheduler = getattr(state, "sla_scheduler", None)
        queue = getattr(state, "notification_queue", None)

        checks = {
            "sla_config": "loaded" if config_manager is not None else "not_loaded",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "notification_queue": f"{queue.pending} pending" if queue is not None else "not_started",
        }
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Municipal Ticketing",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "tickets": {"prefix": "/tickets"},
                "sla": {"prefix": "/sla"},
                "assignment": {"prefix": "/assignments"},
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "municipal_ticketing.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
