"""Budget management API endpoints.

Staff (any role but resident) manage periods, lines, contributions,
missing payments, documents and ledger entries. Residents may read the periods of buildings
they live in; other periods look like they do not exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from src.condoboard.api.deps import (
    get_budget_service,
    get_ledger_service,
    get_tenant,
    is_resident,
    require_member,
    require_staff,
)
from src.condoboard.budget.schemas import (
    BalanceRead,
    BudgetLineCreate,
    BudgetLineRead,
    BudgetLineUpdate,
    BudgetPeriodCreate,
    BudgetPeriodDetail,
    BudgetPeriodListItem,
    BudgetPeriodRead,
    BudgetPeriodUpdate,
    ContributionRead,
    ContributionSet,
    DocumentAttach,
    DocumentRead,
    MissingPaymentCreate,
    MissingPaymentRead,
    SendForApprovalResult,
    TransactionCreate,
    TransactionRead,
)
from src.condoboard.core.errors import BudgetPeriodNotFound
from src.condoboard.core.security import Principal
from src.condoboard.core.tenant import TenantContext

router = APIRouter(prefix="/api/v1/budget", tags=["budget"])


# ── Periods ─────────────────────────────────────────────────────────────────


@router.get("/periods", response_model=list[BudgetPeriodListItem])
async def list_periods(
    building_id: int | None = Query(default=None, gt=0),
    principal: Principal = Depends(require_member),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> list[BudgetPeriodListItem]:
    """Periods newest year first. Residents only see their own buildings."""
    slug = tenant.tenant_slug
    building_ids = [building_id] if building_id is not None else None
    if is_resident(principal, tenant):
        allowed = await service.member_building_ids(slug, principal.user_id)
        building_ids = [b for b in (building_ids or allowed) if b in allowed]
    return await service.list_periods(slug, building_ids)


@router.post("/periods", response_model=BudgetPeriodRead, status_code=status.HTTP_201_CREATED)
async def create_period(
    body: BudgetPeriodCreate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> BudgetPeriodRead:
    return await service.create_budget_period(
        tenant.tenant_slug, body.building_id, body.name, body.year, principal.user_id
    )


@router.get("/periods/{period_id}", response_model=BudgetPeriodDetail)
async def get_period(
    period_id: int,
    principal: Principal = Depends(require_member),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> BudgetPeriodDetail:
    detail = await service.get_period_detail(tenant.tenant_slug, period_id)
    if is_resident(principal, tenant):
        allowed = await service.member_building_ids(tenant.tenant_slug, principal.user_id)
        if detail.period.building_id not in allowed:
            raise BudgetPeriodNotFound(period_id)
    return detail


@router.patch("/periods/{period_id}", response_model=BudgetPeriodRead)
async def update_period(
    period_id: int,
    body: BudgetPeriodUpdate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> BudgetPeriodRead:
    return await service.update_period(tenant.tenant_slug, period_id, body, principal.user_id)


@router.delete("/periods/{period_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_period(
    period_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> Response:
    await service.delete_period(tenant.tenant_slug, period_id, principal.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/periods/{period_id}/send-for-approval", response_model=SendForApprovalResult)
async def send_for_approval(
    period_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> SendForApprovalResult:
    """Issue approval links to every unit. Repeating the call is a no-op."""
    return await service.send_for_approval(tenant.tenant_slug, period_id, principal.user_id)


@router.post("/periods/{period_id}/close", response_model=BudgetPeriodRead)
async def close_period(
    period_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> BudgetPeriodRead:
    return await service.close_period(tenant.tenant_slug, period_id, principal.user_id)


# ── Lines ───────────────────────────────────────────────────────────────────


@router.post(
    "/periods/{period_id}/lines", response_model=BudgetLineRead, status_code=status.HTTP_201_CREATED
)
async def add_line(
    period_id: int,
    body: BudgetLineCreate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> BudgetLineRead:
    return await service.add_line(tenant.tenant_slug, period_id, body, principal.user_id)


@router.patch("/periods/{period_id}/lines/{line_id}", response_model=BudgetLineRead)
async def update_line(
    period_id: int,
    line_id: int,
    body: BudgetLineUpdate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> BudgetLineRead:
    return await service.update_line(tenant.tenant_slug, period_id, line_id, body, principal.user_id)


@router.delete("/periods/{period_id}/lines/{line_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_line(
    period_id: int,
    line_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> Response:
    await service.delete_line(tenant.tenant_slug, period_id, line_id, principal.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Contributions ───────────────────────────────────────────────────────────


@router.put("/periods/{period_id}/contributions", response_model=ContributionRead)
async def set_contribution(
    period_id: int,
    body: ContributionSet,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> ContributionRead:
    return await service.set_unit_contribution(
        tenant.tenant_slug, period_id, body.unit_id, body.amount, principal.user_id
    )


# ── Missing Payments ────────────────────────────────────────────────────────


@router.get("/periods/{period_id}/missing-payments", response_model=list[MissingPaymentRead])
async def list_missing_payments(
    period_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> list[MissingPaymentRead]:
    return await service.list_missing_payments(tenant.tenant_slug, period_id)


@router.post(
    "/periods/{period_id}/missing-payments",
    response_model=MissingPaymentRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_missing_payment(
    period_id: int,
    body: MissingPaymentCreate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> MissingPaymentRead:
    return await service.add_missing_payment(tenant.tenant_slug, period_id, body, principal.user_id)


@router.delete(
    "/periods/{period_id}/missing-payments/{missing_payment_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_missing_payment(
    period_id: int,
    missing_payment_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> Response:
    await service.delete_missing_payment(tenant.tenant_slug, period_id, missing_payment_id, principal.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Documents ───────────────────────────────────────────────────────────────


@router.post("/periods/{period_id}/documents", response_model=DocumentRead)
async def attach_document(
    period_id: int,
    body: DocumentAttach,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> DocumentRead:
    return await service.attach_document(tenant.tenant_slug, period_id, body.document_id, principal.user_id)


@router.delete("/periods/{period_id}/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def detach_document(
    period_id: int,
    document_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_budget_service),
) -> Response:
    await service.detach_document(tenant.tenant_slug, period_id, document_id, principal.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Ledger ──────────────────────────────────────────────────────────────────


@router.post("/transactions", response_model=TransactionRead, status_code=status.HTTP_201_CREATED)
async def record_transaction(
    body: TransactionCreate,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    ledger=Depends(get_ledger_service),
) -> TransactionRead:
    entry, _balance = await ledger.record_transaction(tenant.tenant_slug, body, principal.user_id)
    return entry


@router.get("/buildings/{building_id}/balance", response_model=BalanceRead)
async def get_balance(
    building_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    ledger=Depends(get_ledger_service),
) -> BalanceRead:
    return await ledger.get_balance(tenant.tenant_slug, building_id)
