"""Fee template and unit fee endpoints. Staff only.

The /unit-fees routes are declared before /{template_id} so the literal
segment is never parsed as a template id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from src.condoboard.api.deps import get_fee_service, get_tenant, require_staff
from src.condoboard.budget.schemas import (
    FeeTemplateCreate,
    FeeTemplateRead,
    FeeTemplateUpdate,
    UnitFeeCreate,
    UnitFeeRead,
    UnitFeeUpdate,
)
from src.condoboard.core.security import Principal
from src.condoboard.core.tenant import TenantContext

router = APIRouter(prefix="/api/v1/fee-templates", tags=["fees"])


@router.get("", response_model=list[FeeTemplateRead])
async def list_templates(
    building_id: int | None = Query(default=None, gt=0),
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_fee_service),
) -> list[FeeTemplateRead]:
    return await service.list_templates(tenant.tenant_slug, building_id)


@router.post("", response_model=FeeTemplateRead, status_code=status.HTTP_201_CREATED)
async def create_template(
    body: FeeTemplateCreate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_fee_service),
) -> FeeTemplateRead:
    return await service.create_template(tenant.tenant_slug, body, principal.user_id)


# ── Unit Fees ───────────────────────────────────────────────────────────────


@router.get("/unit-fees", response_model=list[UnitFeeRead])
async def list_unit_fees(
    unit_id: int | None = Query(default=None, gt=0),
    building_id: int | None = Query(default=None, gt=0),
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_fee_service),
) -> list[UnitFeeRead]:
    """Fees of a unit or of a building's units, latest effective_from first."""
    return await service.list_unit_fees(tenant.tenant_slug, unit_id, building_id)


@router.post("/unit-fees", response_model=UnitFeeRead, status_code=status.HTTP_201_CREATED)
async def create_unit_fee(
    body: UnitFeeCreate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_fee_service),
) -> UnitFeeRead:
    return await service.create_unit_fee(tenant.tenant_slug, body, principal.user_id)


@router.patch("/unit-fees/{unit_fee_id}", response_model=UnitFeeRead)
async def update_unit_fee(
    unit_fee_id: int,
    body: UnitFeeUpdate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_fee_service),
) -> UnitFeeRead:
    return await service.update_unit_fee(tenant.tenant_slug, unit_fee_id, body, principal.user_id)


@router.delete("/unit-fees/{unit_fee_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_unit_fee(
    unit_fee_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_fee_service),
) -> Response:
    await service.delete_unit_fee(tenant.tenant_slug, unit_fee_id, principal.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Single Template ─────────────────────────────────────────────────────────


@router.get("/{template_id}", response_model=FeeTemplateRead)
async def get_template(
    template_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_fee_service),
) -> FeeTemplateRead:
    return await service.get_template(tenant.tenant_slug, template_id)


@router.patch("/{template_id}", response_model=FeeTemplateRead)
async def update_template(
    template_id: int,
    body: FeeTemplateUpdate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_fee_service),
) -> FeeTemplateRead:
    return await service.update_template(tenant.tenant_slug, template_id, body, principal.user_id)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_fee_service),
) -> Response:
    await service.delete_template(tenant.tenant_slug, template_id, principal.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
