"""Document library endpoints.

Staff upload (multipart/form-data) and delete; any member may list and
download. Uploaded documents can then be attached to budget periods.
"""

from __future__ import annotations

from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status

from src.condoboard.api.deps import get_document_service, get_tenant, require_member, require_staff
from src.condoboard.budget.schemas import DocumentRead
from src.condoboard.core.security import Principal
from src.condoboard.core.tenant import TenantContext

router = APIRouter(prefix="/api/v1/documents", tags=["documents"])


@router.get("", response_model=list[DocumentRead])
async def list_documents(
    building_id: int | None = Query(default=None, gt=0),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(require_member),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_document_service),
) -> list[DocumentRead]:
    return await service.list_documents(tenant.tenant_slug, building_id, limit, offset)


@router.post("", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: Annotated[UploadFile, File(...)],
    title: Annotated[str, Form(min_length=1, max_length=255)],
    building_id: Annotated[int | None, Form(gt=0)] = None,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_document_service),
) -> DocumentRead:
    """Upload one file.

    Example:
        curl -X POST http://localhost:8000/api/v1/documents \\
             -H "Authorization: Bearer $TOKEN" -H "X-Tenant-Slug: maple" \\
             -F "title=Budget 2026" -F "file=@budget-2026.pdf"
    """
    data = await file.read()
    return await service.upload_document(
        tenant.tenant_slug,
        title,
        file.filename or "upload",
        data,
        principal.user_id,
        content_type=file.content_type,
        building_id=building_id,
    )


@router.get("/{document_id}/download")
async def download_document(
    document_id: int,
    principal: Principal = Depends(require_member),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_document_service),
) -> Response:
    document, data = await service.download_document(tenant.tenant_slug, document_id)
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(document.filename)}"},
    )


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: int,
    principal: Principal = Depends(require_staff),
    tenant: TenantContext = Depends(get_tenant),
    service=Depends(get_document_service),
) -> Response:
    await service.delete_document(tenant.tenant_slug, document_id, principal.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
