"""Tenant provisioning service.

Creates a tenant as a three-stage saga rather than one transaction, because
schema DDL and the migration batch cannot safely share the catalog insert's
transaction:

1. registered -- tenant row inserted and empty schema created (one public
   transaction; a duplicate slug fails here and nothing is created)
2. migrated   -- tenant migrations applied inside the new schema
3. owned      -- the owner's org_owner membership recorded

A failure after stage 1 leaves the tenant row and schema in place and raises
ProvisioningFailed naming the last completed stage. Nothing is undone
automatically; operators run repair_tenant(), which is idempotent.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from sqlalchemy import select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.condoboard.core.database import Database
from src.condoboard.core.errors import ProvisioningFailed, TenantAlreadyExists, TenantNotFound
from src.condoboard.core.redis import tenant_slug_key
from src.condoboard.core.tenant import create_schema_statement, resolve_schema, validate_slug
from src.condoboard.migrations.runner import TenantMigrationRunner
from src.condoboard.models.public import OrgRole, Tenant, TenantUser
from src.condoboard.schemas.tenant import ProvisioningReport, ProvisioningStage, TenantRead

logger = structlog.get_logger(__name__)


def _to_read(tenant: Tenant) -> TenantRead:
    return TenantRead(
        id=tenant.id,
        slug=tenant.slug,
        name=tenant.name,
        schema_name=resolve_schema(tenant.slug),
        logo=tenant.logo,
        address=tenant.address,
        currency=tenant.currency,
        created_at=tenant.created_at,
    )


class TenantProvisioningService:
    """Creates, repairs and looks up tenants.

    Args:
        database: Shared Database handle.
        runner: Migration runner for tenant schemas.
        redis: Optional Redis client for the slug lookup cache.
        cache_ttl: Seconds a cached lookup stays valid.
    """

    def __init__(
        self,
        database: Database,
        runner: TenantMigrationRunner,
        redis: aioredis.Redis | None = None,
        cache_ttl: int = 300,
    ) -> None:
        self._database = database
        self._runner = runner
        self._redis = redis
        self._cache_ttl = cache_ttl

    # ── Create ──────────────────────────────────────────────────────────────

    async def create_tenant(self, name: str, slug: str, owner_user_id: int) -> TenantRead:
        """Provision a tenant with its own schema and owner.

        Raises:
            InvalidTenantIdentifier: Malformed slug (nothing touched).
            TenantAlreadyExists: Slug taken (nothing created).
            ProvisioningFailed: Migration or owner assignment failed after the
                tenant was registered.
        """
        schema = resolve_schema(slug)

        async def _register(session: AsyncSession) -> TenantRead:
            existing = await session.execute(select(Tenant.id).where(Tenant.slug == slug))
            if existing.first() is not None:
                raise TenantAlreadyExists(slug)
            tenant = Tenant(slug=slug, name=name)
            session.add(tenant)
            try:
                await session.flush()
            except IntegrityError as exc:
                # Lost a race with a concurrent create of the same slug
                raise TenantAlreadyExists(slug) from exc
            await session.refresh(tenant)
            await session.execute(create_schema_statement(schema))
            return _to_read(tenant)

        tenant = await self._database.with_public(_register)
        logger.info("tenant_registered", tenant=slug, tenant_id=tenant.id)

        try:
            applied = await self._runner.run(slug)
        except Exception as exc:
            logger.error("tenant_migration_failed", tenant=slug, exc_info=True)
            raise ProvisioningFailed(slug, ProvisioningStage.REGISTERED.value, exc) from exc

        try:
            await self._database.with_public(
                lambda session: self._insert_owner(session, tenant.id, owner_user_id)
            )
        except Exception as exc:
            logger.error("tenant_owner_assignment_failed", tenant=slug, exc_info=True)
            raise ProvisioningFailed(slug, ProvisioningStage.MIGRATED.value, exc) from exc

        await self._forget(slug)
        logger.info(
            "tenant_provisioned",
            tenant=slug,
            tenant_id=tenant.id,
            migrations=applied,
            owner_user_id=owner_user_id,
        )
        return tenant

    # ── Repair ──────────────────────────────────────────────────────────────

    async def repair_tenant(self, slug: str, owner_user_id: int | None = None) -> ProvisioningReport:
        """Bring a partially provisioned tenant to a complete state.

        Safe to run any number of times: the schema is created only if
        missing, only unrecorded migrations are applied, and the owner
        membership is inserted only if absent.
        """
        schema = resolve_schema(slug)

        async def _inspect(session: AsyncSession) -> tuple[TenantRead, bool]:
            result = await session.execute(select(Tenant).where(Tenant.slug == slug))
            tenant = result.scalar_one_or_none()
            if tenant is None:
                raise TenantNotFound(slug)
            found = await session.execute(
                text("SELECT 1 FROM information_schema.schemata WHERE schema_name = :schema"),
                {"schema": schema},
            )
            return _to_read(tenant), found.first() is not None

        tenant, schema_existed = await self._database.with_public(_inspect)

        try:
            applied = await self._runner.run(slug)
        except Exception as exc:
            logger.error("tenant_repair_migration_failed", tenant=slug, exc_info=True)
            raise ProvisioningFailed(slug, ProvisioningStage.REGISTERED.value, exc) from exc

        owner_assigned = False
        if owner_user_id is not None:
            owner_assigned = await self._database.with_public(
                lambda session: self._insert_owner(session, tenant.id, owner_user_id)
            )

        has_owner = await self._database.with_public(lambda session: self._has_owner(session, tenant.id))
        stage = ProvisioningStage.OWNED if has_owner else ProvisioningStage.MIGRATED

        await self._forget(slug)
        logger.info(
            "tenant_repaired",
            tenant=slug,
            schema_created=not schema_existed,
            migrations=applied,
            owner_assigned=owner_assigned,
            stage=stage.value,
        )
        return ProvisioningReport(
            tenant=tenant,
            stage=stage,
            schema_created=not schema_existed,
            applied_migrations=applied,
            owner_assigned=owner_assigned,
        )

    @staticmethod
    async def _insert_owner(session: AsyncSession, tenant_id: int, user_id: int) -> bool:
        stmt = (
            pg_insert(TenantUser)
            .values(tenant_id=tenant_id, user_id=user_id, role=OrgRole.ORG_OWNER.value)
            .on_conflict_do_nothing(index_elements=["tenant_id", "user_id"])
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    async def _has_owner(session: AsyncSession, tenant_id: int) -> bool:
        result = await session.execute(
            select(TenantUser.id).where(
                TenantUser.tenant_id == tenant_id,
                TenantUser.role == OrgRole.ORG_OWNER.value,
            )
        )
        return result.first() is not None

    # ── Lookup ──────────────────────────────────────────────────────────────

    async def list_tenants(self) -> list[TenantRead]:
        async def _list(session: AsyncSession) -> list[TenantRead]:
            result = await session.execute(select(Tenant).order_by(Tenant.created_at, Tenant.id))
            return [_to_read(t) for t in result.scalars()]

        return await self._database.with_public(_list)

    async def get_tenant_by_slug(self, slug: str) -> TenantRead | None:
        """Look up a tenant by slug. Caches result in Redis."""
        validate_slug(slug)

        if self._redis is not None:
            try:
                cached = await self._redis.get(tenant_slug_key(slug))
                if cached:
                    return TenantRead.model_validate_json(cached)
            except Exception:
                logger.warning("tenant_cache_read_failed", tenant=slug)

        async def _get(session: AsyncSession) -> TenantRead | None:
            result = await session.execute(select(Tenant).where(Tenant.slug == slug))
            tenant = result.scalar_one_or_none()
            return _to_read(tenant) if tenant is not None else None

        tenant = await self._database.with_public(_get)
        if tenant is None:
            return None

        if self._redis is not None:
            try:
                await self._redis.set(tenant_slug_key(slug), tenant.model_dump_json(), ex=self._cache_ttl)
            except Exception:
                logger.warning("tenant_cache_write_failed", tenant=slug)

        return tenant

    async def _forget(self, slug: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(tenant_slug_key(slug))
        except Exception:
            logger.warning("tenant_cache_delete_failed", tenant=slug)
