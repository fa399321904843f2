"""Tenant management API endpoints.

These endpoints skip tenant middleware (no X-Tenant-Slug needed) since they
are platform-level provisioning endpoints. Callers need the platform_admin
claim.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.condoboard.api.deps import get_tenant_service, require_platform_admin
from src.condoboard.core.security import Principal
from src.condoboard.schemas.tenant import ProvisioningReport, TenantCreate, TenantRead, TenantRepair

router = APIRouter(prefix="/api/v1/tenants", tags=["tenants"])


@router.post("", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: TenantCreate,
    principal: Principal = Depends(require_platform_admin),
    service=Depends(get_tenant_service),
) -> TenantRead:
    """Provision a new tenant with its own schema and owner."""
    return await service.create_tenant(name=body.name, slug=body.slug, owner_user_id=body.owner_user_id)


@router.get("", response_model=list[TenantRead])
async def list_tenants(
    principal: Principal = Depends(require_platform_admin),
    service=Depends(get_tenant_service),
) -> list[TenantRead]:
    return await service.list_tenants()


@router.post("/{slug}/repair", response_model=ProvisioningReport)
async def repair_tenant(
    slug: str,
    body: TenantRepair | None = None,
    principal: Principal = Depends(require_platform_admin),
    service=Depends(get_tenant_service),
) -> ProvisioningReport:
    """Finish a partially provisioned tenant. Safe to repeat."""
    owner_user_id = body.owner_user_id if body is not None else None
    return await service.repair_tenant(slug, owner_user_id=owner_user_id)
