"""
FleetDesk STS - Main Application
==================================

Support ticket service with SLA compliance tracking for fleet maintenance.

Modules:
- STS: Ticket lifecycle, SLA evaluation, maintenance windows, compliance dashboard

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects (SLA engine)
- Infrastructure: Database, case service client, policy seed file
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from fleetdesk.config import settings
from fleetdesk.core import ApplicationException

# Infrastructure
from fleetdesk.infrastructure.database import (
    close_database, create_tables, get_engine, get_session_context, init_database
)
from fleetdesk.sla.infrastructure import close_case_gateway
from fleetdesk.sla.infrastructure.bootstrap import seed_policies_from_file

# Module Routers
from fleetdesk.sla.interfaces import sts_router

# Shared
from fleetdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)
from fleetdesk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database
    3. Create database tables
    4. Seed SLA policies (optional)

    SHUTDOWN:
    1. Close case service client
    2. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting STS service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    # If the database is not available the server still starts, but
    # database-dependent endpoints will fail
    try:
        await create_tables()
    except (OSError, SQLAlchemyError) as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    if settings.sla_policy_seed_path:
        logger.info("Seeding SLA policies", extra={"path": str(settings.sla_policy_seed_path)})
        async with get_session_context() as session:
            written = await seed_policies_from_file(session, settings.sla_policy_seed_path)
        logger.info("SLA policies seeded", extra={"tenants": len(written), "policies": sum(written.values())})

    app.state.settings = settings
    logger.info("STS service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down STS service")
    await close_case_gateway()
    await close_database()
    logger.info("STS service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="FleetDesk STS API",
    description="""
    ## Support Tickets & SLA Compliance

    Tickets against fleet components (CCTV, central devices, ...) with
    response and resolution SLAs per tenant, component and severity.

    ---

    ### STS Module

    **Endpoints:**
    - `POST /sts/tickets` - Open a ticket
    - `GET /sts/tickets` - List tickets (filters: severity, status, component, breach)
    - `GET /sts/tickets/{id}` - Ticket, timeline and live SLA evaluation
    - `PATCH /sts/tickets/{id}` - Change status or assignee
    - `POST /sts/tickets/{id}/events` - Comment / first response
    - `GET|PUT /sts/sla-policies` - SLA policies
    - `GET|POST /sts/maintenance-windows` - Maintenance windows
    - `POST /sts/cases/{case_id}/close-tickets` - Close the tickets of a closed case
    - `POST /sts/sla/recompute` - Re-evaluate every ticket of the tenant
    - `GET /sts/dashboard` - Compliance summary

    **SLA accounting:**
    - Response SLA: minutes from opening to the first response
    - Resolution SLA: minutes from opening to close, paused while waiting on a
      vendor and excluding maintenance windows

    Every request must carry an `X-Tenant-ID` header.

    ---
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

# === Custom Middleware (from shared) ===
# Added last runs first: the correlation ID is set before request logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sts_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "case_service": "configured"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Database connectivity
    - Case service configuration
    """
    checks = {
        "database": "connected",
        "case_service": "configured" if settings.case_service_url else "not_configured"
    }

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (RuntimeError, OSError, SQLAlchemyError) as e:
        checks["database"] = f"error: {e}"

    return {
        "status": "healthy" if checks["database"] == "connected" else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "FleetDesk STS",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sts": {
                "prefix": "/sts",
                "endpoints": [
                    "POST /sts/tickets - Open ticket",
                    "GET /sts/tickets/{id} - Ticket with SLA evaluation",
                    "PATCH /sts/tickets/{id} - Change status / assignee",
                    "GET /sts/dashboard - Compliance dashboard"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fleetdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
