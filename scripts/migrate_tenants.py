#!/usr/bin/env python3
"""CLI script to apply pending tenant migrations to every tenant schema.

Usage:
    python scripts/migrate_tenants.py            # migrate all tenants
    python scripts/migrate_tenants.py --dry-run  # list pending migrations only

Run after adding a migration to src/condoboard/migrations/tenant.py. Each
tenant is migrated in its own transaction; a failure is reported and the
remaining tenants are still processed.
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


async def migrate_all(dry_run: bool) -> int:
    from src.condoboard.api.middleware.logging import configure_structlog
    from src.condoboard.config import get_settings
    from src.condoboard.core.database import create_database
    from src.condoboard.core.errors import CondoboardError
    from src.condoboard.migrations.runner import TenantMigrationRunner
    from src.condoboard.services.tenant_provisioning import TenantProvisioningService

    settings = get_settings()
    configure_structlog(settings)
    database = create_database(settings)
    runner = TenantMigrationRunner(database)
    service = TenantProvisioningService(database, runner)

    failures = 0
    try:
        tenants = await service.list_tenants()
        if not tenants:
            print("No tenants found.")
            return 0

        for tenant in tenants:
            try:
                if dry_run:
                    pending = await runner.pending(tenant.slug)
                    print(f"{tenant.slug}: {', '.join(pending) or 'up to date'}")
                else:
                    applied = await runner.run(tenant.slug)
                    print(f"{tenant.slug}: {', '.join(applied) or 'up to date'}")
            except CondoboardError as exc:
                failures += 1
                print(f"{tenant.slug}: FAILED -- {exc.message}", file=sys.stderr)
    finally:
        await database.close()

    return 1 if failures else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate every tenant schema")
    parser.add_argument("--dry-run", action="store_true", help="Only list pending migrations")
    args = parser.parse_args()
    sys.exit(asyncio.run(migrate_all(args.dry_run)))


if __name__ == "__main__":
    main()
