"""Alembic environment for the public (catalog) schema.

Only public.tenants, public.users and public.tenant_users are managed here:
  alembic upgrade head

Tenant schemas are migrated in-process by TenantMigrationRunner
(scripts/migrate_tenants.py), never by Alembic.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from src.condoboard.config import get_settings
from src.condoboard.core.database import PublicBase
from src.condoboard.models import public  # noqa: F401 -- registers the catalog tables

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = PublicBase.metadata
VERSION_TABLE_SCHEMA = "public"


def _sync_url() -> str:
    return get_settings().DATABASE_URL.replace("+asyncpg", "+psycopg2")


def include_object(obj, name, type_, reflected, compare_to) -> bool:
    """Ignore anything outside the public schema (tenant schemas included)."""
    if type_ == "table":
        return getattr(obj, "schema", None) == VERSION_TABLE_SCHEMA
    return True


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table_schema=VERSION_TABLE_SCHEMA,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(_sync_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table_schema=VERSION_TABLE_SCHEMA,
            include_schemas=True,
            include_object=include_object,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
