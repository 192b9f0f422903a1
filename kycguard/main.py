"""KYCGuard - Main Application Entry Point."""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from kycguard.api.middleware import setup_middleware
from kycguard.api.routes import metrics_router, router as api_router
from kycguard.audit.repository import InMemoryAuditRepository, SqlAlchemyAuditRepository
from kycguard.audit.service import AuditLedger, utc_now
from kycguard.common.exceptions import register_exception_handlers
from kycguard.common.metrics import set_service_info
from kycguard.core.config import Settings, get_settings
from kycguard.core.logging import configure_logging
from kycguard.db.engine import close_db, create_engine_from_settings, create_session_factory, init_db
from kycguard.providers.registry import ProviderRegistry
from kycguard.review.service import ReviewOverrideGate
from kycguard.sessions.repository import InMemorySessionRepository, SqlAlchemySessionRepository
from kycguard.sessions.service import VerificationService

logger = structlog.get_logger(__name__)


# ============================================================================
# SERVICE WIRING
# ============================================================================


@dataclass
class Services:
    """Everything a running application holds on ``app.state``."""

    verification: VerificationService
    review_gate: ReviewOverrideGate
    providers: ProviderRegistry
    engine: Optional[AsyncEngine] = None


def build_services(
    settings: Settings,
    registry: Optional[ProviderRegistry] = None,
    clock: Callable[[], datetime] = utc_now,
) -> Services:
    """SQL repositories when a database is configured, in-memory otherwise."""
    engine = None
    if settings.uses_database:
        engine = create_engine_from_settings(settings)
        factory = create_session_factory(engine)
        session_repo = SqlAlchemySessionRepository(factory)
        audit_repo = SqlAlchemyAuditRepository(factory)
    else:
        session_repo = InMemorySessionRepository()
        audit_repo = InMemoryAuditRepository()

    providers = registry if registry is not None else ProviderRegistry.from_settings(settings)
    ledger = AuditLedger(audit_repo, clock=clock)
    verification = VerificationService(session_repo, ledger, providers, settings, clock=clock)

    return Services(
        verification=verification,
        review_gate=ReviewOverrideGate(verification),
        providers=providers,
        engine=engine,
    )


# ============================================================================
# LIFESPAN
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    services: Services = app.state.services

    logger.info(
        "kycguard_starting",
        version=settings.app_version,
        environment=settings.environment,
    )
    set_service_info(settings.app_version, settings.environment)

    if services.engine is not None:
        await init_db(services.engine)

    logger.info("kycguard_ready", host=settings.api_host, port=settings.api_port, docs_url="/docs")

    yield

    logger.info("kycguard_shutting_down")
    await services.providers.aclose()
    if services.engine is not None:
        await close_db(services.engine)
    logger.info("kycguard_stopped")


# ============================================================================
# APP FACTORY
# ============================================================================


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ProviderRegistry] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings)
    services = build_services(settings, registry, clock)

    app = FastAPI(
        title=settings.app_name,
        description="""
# KYCGuard - Deepfake-aware identity verification

Runs a subject through ordered evidence stages (personal info, documents,
selfie, liveness, voice), fuses detector signals into one explainable
decision, and keeps a tamper-evident audit ledger.

## API Sections
- **Sessions**: start, submit or skip stages, complete, override
- **Audit Ledger**: export and chain verification
- **Review**: queue of sessions awaiting a reviewer
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=[
            {"name": "Health", "description": "Health checks and Prometheus metrics"},
            {"name": "Sessions", "description": "Verification session lifecycle"},
            {"name": "Audit Ledger", "description": "Append-only audit export and verification"},
            {"name": "Review", "description": "Reviewer queue"},
        ],
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.services = services
    app.state.verification = services.verification
    app.state.review_gate = services.review_gate

    register_exception_handlers(app)
    setup_middleware(app, record_metrics=settings.metrics_enabled)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)
    if settings.metrics_enabled:
        app.include_router(metrics_router, prefix=settings.api_prefix, tags=["Health"])

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint - service info."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "environment": settings.environment,
            "docs": "/docs",
            "api": settings.api_prefix,
        }

    return app


# ============================================================================
# DEVELOPMENT SERVER
# ============================================================================


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
