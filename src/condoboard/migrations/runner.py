"""In-process migration runner for tenant schemas.

Applies TENANT_MIGRATIONS, in order, inside one Database.with_tenant()
transaction. Applied tags are recorded in the tenant's schema_migrations
table, so running again only applies what is missing. Any failing statement
aborts the batch (the transaction is rolled back) and raises MigrationFailed.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from src.condoboard.core.database import Database
from src.condoboard.core.errors import MigrationFailed
from src.condoboard.core.tenant import create_schema_statement, resolve_schema
from src.condoboard.migrations.tenant import TENANT_MIGRATIONS, TenantMigration

logger = structlog.get_logger(__name__)

BOOKKEEPING_DDL = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        tag VARCHAR(128) PRIMARY KEY,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
"""


class TenantMigrationRunner:
    """Brings one tenant schema up to the latest migration."""

    def __init__(
        self,
        database: Database,
        migrations: Sequence[TenantMigration] = TENANT_MIGRATIONS,
    ) -> None:
        self._database = database
        self._migrations = tuple(migrations)

    @property
    def tags(self) -> list[str]:
        return [m.tag for m in self._migrations]

    async def run(self, slug: str) -> list[str]:
        """Apply every pending migration to ``tenant_<slug>``. Returns applied tags."""
        schema = resolve_schema(slug)

        async def _apply(session: AsyncSession) -> list[str]:
            await session.execute(create_schema_statement(schema))
            conn = await session.connection()
            await conn.exec_driver_sql(BOOKKEEPING_DDL)
            done = await _applied_tags(conn)

            applied: list[str] = []
            for migration in self._migrations:
                if migration.tag in done:
                    continue
                for index, statement in enumerate(migration.statements):
                    try:
                        # exec_driver_sql: DDL is not parsed for bind parameters
                        await conn.exec_driver_sql(statement)
                    except SQLAlchemyError as exc:
                        raise MigrationFailed(migration.tag, index, exc) from exc
                await conn.execute(
                    text("INSERT INTO schema_migrations (tag) VALUES (:tag)"),
                    {"tag": migration.tag},
                )
                applied.append(migration.tag)
                logger.info("tenant_migration_applied", tenant=slug, tag=migration.tag)
            return applied

        return await self._database.with_tenant(slug, _apply)

    async def pending(self, slug: str) -> list[str]:
        """Tags not yet recorded for ``tenant_<slug>``."""
        schema = resolve_schema(slug)

        async def _pending(session: AsyncSession) -> list[str]:
            exists = await session.execute(
                text(
                    "SELECT 1 FROM information_schema.tables "
                    "WHERE table_schema = :schema AND table_name = 'schema_migrations'"
                ),
                {"schema": schema},
            )
            if exists.first() is None:
                return self.tags
            done = await _applied_tags(await session.connection())
            return [tag for tag in self.tags if tag not in done]

        return await self._database.with_tenant(slug, _pending)


async def _applied_tags(conn: AsyncConnection) -> set[str]:
    result = await conn.execute(text("SELECT tag FROM schema_migrations"))
    return {row[0] for row in result}
