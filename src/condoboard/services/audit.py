"""Audit trail writer for tenant-scoped actions.

Entries are added to the caller's session, so they commit or roll back with
the change they describe.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.condoboard.models.tenant import AuditLogModel


async def log_audit(
    session: AsyncSession,
    actor_id: int,
    action: str,
    entity_type: str,
    entity_id: int | str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    session.add(
        AuditLogModel(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=details,
        )
    )
    await session.flush()
