#!/usr/bin/env python3
"""CLI script to provision a new tenant.

Usage:
    python scripts/provision_tenant.py --slug riverside --name "Riverside Condos" --owner-email owner@example.com
    python scripts/provision_tenant.py --slug riverside --repair

Connects directly to the database using DATABASE_URL from environment or .env file.
Registers the tenant in public.tenants, creates and migrates its schema, and
makes the given (existing) user its org_owner. --repair finishes a tenant
whose provisioning stopped part-way.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.condoboard
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def _find_user_id(database, email: str) -> int | None:
    from sqlalchemy import select

    from src.condoboard.models.public import User

    async def _lookup(session):
        result = await session.execute(select(User.id).where(User.email == email))
        return result.scalar_one_or_none()

    return await database.with_public(_lookup)


async def provision(slug: str, name: str | None, owner_email: str | None, repair: bool) -> int:
    """Provision (or repair) a tenant by calling the provisioning service directly."""
    from src.condoboard.api.middleware.logging import configure_structlog
    from src.condoboard.config import get_settings
    from src.condoboard.core.database import create_database
    from src.condoboard.core.errors import CondoboardError, ProvisioningFailed
    from src.condoboard.migrations.runner import TenantMigrationRunner
    from src.condoboard.services.tenant_provisioning import TenantProvisioningService

    settings = get_settings()
    configure_structlog(settings)
    database = create_database(settings)
    service = TenantProvisioningService(database, TenantMigrationRunner(database))

    try:
        await database.init_public_schema()

        owner_id = None
        if owner_email:
            owner_id = await _find_user_id(database, owner_email)
            if owner_id is None:
                print(f"User not found: {owner_email}", file=sys.stderr)
                return 1

        if repair:
            report = await service.repair_tenant(slug, owner_user_id=owner_id)
            print(f"Tenant repaired: slug={slug}")
            print(f"  Stage:          {report.stage.value}")
            print(f"  Schema created: {report.schema_created}")
            print(f"  Migrations:     {', '.join(report.applied_migrations) or '(none pending)'}")
            print(f"  Owner assigned: {report.owner_assigned}")
            return 0

        print(f"Provisioning tenant: slug={slug}, name={name}")
        tenant = await service.create_tenant(name=name, slug=slug, owner_user_id=owner_id)
        print("Tenant provisioned successfully:")
        print(f"  ID:     {tenant.id}")
        print(f"  Slug:   {tenant.slug}")
        print(f"  Name:   {tenant.name}")
        print(f"  Schema: {tenant.schema_name}")
        return 0
    except ProvisioningFailed as exc:
        print(f"{exc.message}", file=sys.stderr)
        print(f"Re-run with --repair to finish (last completed stage: {exc.completed_stage})", file=sys.stderr)
        return 2
    except CondoboardError as exc:
        print(exc.message, file=sys.stderr)
        return 1
    finally:
        await database.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Provision a new tenant")
    parser.add_argument("--slug", required=True, help="Tenant slug (e.g., riverside)")
    parser.add_argument("--name", default=None, help="Tenant display name")
    parser.add_argument("--owner-email", default=None, help="E-mail of the existing user who will own the tenant")
    parser.add_argument("--repair", action="store_true", help="Finish a partially provisioned tenant")
    args = parser.parse_args()

    if not args.repair and (not args.name or not args.owner_email):
        parser.error("--name and --owner-email are required unless --repair is given")

    sys.exit(asyncio.run(provision(args.slug, args.name, args.owner_email, args.repair)))


if __name__ == "__main__":
    main()
