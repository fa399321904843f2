"""Public budget approval endpoints (no login).

The approval token from the e-mailed link is the only credential. The
tenant comes from the X-Tenant-Slug header sent by the approval page.
"""

from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response

from src.condoboard.api.deps import get_approval_service, get_tenant
from src.condoboard.budget.schemas import ApprovalInfo, ApprovalOutcome, ApproveRequest, RejectRequest
from src.condoboard.core.tenant import TenantContext

router = APIRouter(prefix="/api/v1/budget-approval", tags=["budget-approval"])


@router.get("/periods/{period_id}/approve-info", response_model=ApprovalInfo)
async def approve_info(
    period_id: int,
    token: str = Query(default=""),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_approval_service),
) -> ApprovalInfo:
    return await service.get_approval_info(tenant.tenant_slug, period_id, token)


@router.post("/periods/{period_id}/approve", response_model=ApprovalOutcome)
async def approve(
    period_id: int,
    body: ApproveRequest,
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_approval_service),
) -> ApprovalOutcome:
    return await service.approve_by_token(tenant.tenant_slug, period_id, body.token)


@router.post("/periods/{period_id}/reject", response_model=ApprovalOutcome)
async def reject(
    period_id: int,
    body: RejectRequest,
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_approval_service),
) -> ApprovalOutcome:
    return await service.reject_by_token(tenant.tenant_slug, period_id, body.token, body.reason)


@router.get("/periods/{period_id}/documents/{document_id}")
async def download_document(
    period_id: int,
    document_id: int,
    token: str = Query(default=""),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_approval_service),
) -> Response:
    filename, data = await service.open_document(tenant.tenant_slug, period_id, token, document_id)
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )
