"""Async SQLAlchemy engine with schema-per-tenant transaction scoping.

Provides:
- PublicBase: Declarative base for catalog tables in the public schema
- TenantBase: Declarative base for per-tenant tables (unqualified names,
  resolved through the transaction's search_path)
- Database: the injected pool handle; with_tenant() runs one unit of work in
  one transaction bound to one tenant schema, with_public() runs one against
  the catalog only
- Pool checkout event that resets session state (RESET ALL) so nothing set by
  a previous checkout survives
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from sqlalchemy import MetaData, TextClause, event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.condoboard.config import Settings
from src.condoboard.core.tenant import resolve_schema, search_path_statement

logger = structlog.get_logger(__name__)

T = TypeVar("T")

UnitOfWork = Callable[[AsyncSession], Awaitable[T]]
SessionFactory = Callable[[], AsyncSession]

# ── Declarative Bases ───────────────────────────────────────────────────────

public_metadata = MetaData(schema="public")
tenant_metadata = MetaData()


class PublicBase(DeclarativeBase):
    """Base class for catalog models (tenants, users, memberships)."""

    metadata = public_metadata


class TenantBase(DeclarativeBase):
    """Base class for per-tenant models.

    Tables carry no schema; inside with_tenant() the search path is
    "tenant_<slug>", public so they resolve to the bound tenant's tables.
    """

    metadata = tenant_metadata


# ── Engine ──────────────────────────────────────────────────────────────────


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build the async engine (and its connection pool)."""
    engine = create_async_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=False,
    )

    # Reset session variables on every checkout so a search_path or setting
    # from a previous unit of work can never leak into the next one
    @event.listens_for(engine.sync_engine, "checkout")
    def reset_session_state(dbapi_conn: Any, connection_record: Any, connection_proxy: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("RESET ALL")
        cursor.close()

    return engine


# ── Scoped Transaction Executor ─────────────────────────────────────────────


class Database:
    """Handle on the shared connection pool.

    Constructed once at process start (see create_database) and passed to
    every service. Tests construct it with a fake session factory.

    Args:
        session_factory: Zero-arg callable returning a new AsyncSession.
        engine: The engine behind the factory, if any; disposed on close().
    """

    def __init__(self, session_factory: SessionFactory, engine: AsyncEngine | None = None) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database was constructed without an engine")
        return self._engine

    async def with_tenant(self, slug: str, fn: UnitOfWork[T]) -> T:
        """Run ``fn`` in one transaction bound to the tenant's schema.

        The slug is validated before any connection is acquired. The search
        path is set with SET LOCAL, so it ends with the transaction. Nested
        calls open their own session and never share this transaction.
        """
        schema = resolve_schema(slug)
        return await self._run(fn, search_path_statement(schema), tenant=slug)

    async def with_public(self, fn: UnitOfWork[T]) -> T:
        """Run ``fn`` in one transaction with the default (public) search path."""
        return await self._run(fn, None, tenant=None)

    async def _run(self, fn: UnitOfWork[T], bind: TextClause | None, tenant: str | None) -> T:
        async with self._session_factory() as session:
            try:
                if bind is not None:
                    await session.execute(bind)
                result = await fn(session)
                await session.commit()
            except BaseException:
                await self._rollback_quietly(session, tenant)
                raise
            return result

    @staticmethod
    async def _rollback_quietly(session: AsyncSession, tenant: str | None) -> None:
        try:
            await session.rollback()
        except Exception:
            # The original error is what the caller needs to see
            logger.warning("tenant_rollback_failed", tenant=tenant, exc_info=True)

    async def init_public_schema(self) -> None:
        """Create the public catalog tables if they don't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(PublicBase.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine and close all pooled connections."""
        if self._engine is not None:
            await self._engine.dispose()


def create_database(settings: Settings) -> Database:
    """Construct the process-wide Database from settings."""
    engine = create_engine_from_settings(settings)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    return Database(factory, engine=engine)
