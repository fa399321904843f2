"""FastAPI application factory.

Creates the app with tenant middleware, logging middleware, CORS, the
domain error handlers, lifespan wiring of the database, Redis and services,
and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.condoboard.api.errors import register_exception_handlers
from src.condoboard.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.condoboard.api.middleware.tenant import TenantMiddleware
from src.condoboard.api.v1.router import router as v1_router
from src.condoboard.budget.approvals import ApprovalService
from src.condoboard.budget.documents import DocumentService
from src.condoboard.budget.fees import FeeService
from src.condoboard.budget.ledger import LedgerService
from src.condoboard.budget.service import BudgetService
from src.condoboard.config import get_settings
from src.condoboard.core.database import create_database
from src.condoboard.core.redis import close_redis, create_redis
from src.condoboard.migrations.runner import TenantMigrationRunner
from src.condoboard.services.notify import LoggingNotifier
from src.condoboard.services.storage import LocalFileStorage
from src.condoboard.services.tenant_provisioning import TenantProvisioningService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the shared pool and services on startup, release them on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog(settings)

    database = create_database(settings)
    await database.init_public_schema()

    redis = None
    try:
        redis = create_redis(settings)
        await redis.ping()
    except Exception:
        # Tenant lookups fall back to the database
        log.warning("redis_unavailable", exc_info=True)
        await close_redis(redis)
        redis = None

    runner = TenantMigrationRunner(database)
    storage = LocalFileStorage(settings.STORAGE_ROOT)

    app.state.database = database
    app.state.redis = redis
    app.state.migration_runner = runner
    app.state.tenant_service = TenantProvisioningService(
        database, runner, redis=redis, cache_ttl=settings.TENANT_CACHE_TTL_SECONDS
    )
    app.state.budget_service = BudgetService(database, notifier=LoggingNotifier(settings.PUBLIC_BASE_URL))
    app.state.approval_service = ApprovalService(database, storage=storage)
    app.state.ledger_service = LedgerService(database)
    app.state.document_service = DocumentService(database, storage, max_bytes=settings.MAX_DOCUMENT_BYTES)
    app.state.fee_service = FeeService(database)
    log.info("application_started", environment=settings.ENVIRONMENT.value)

    yield

    await close_redis(redis)
    await database.close()
    log.info("application_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Condoboard API",
        version="0.1.0",
        description="Multi-tenant building management: budgets, contributions and resident approvals",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Tenant middleware (inner -- resolves tenant context from header/JWT)
    app.add_middleware(TenantMiddleware)

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

    # Logging middleware (outermost -- logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    register_exception_handlers(app)
    app.include_router(v1_router)
    return app


# Module-level app for uvicorn
app = create_app()
