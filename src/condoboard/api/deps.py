"""FastAPI dependencies for tenant context, authentication and services.

Services are built once in the lifespan and stored on app.state; the getters
below return 503 when one is missing (startup failed or not configured).
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status

from src.condoboard.core.security import Principal, bearer_token, decode_principal
from src.condoboard.core.tenant import TenantContext, get_current_tenant
from src.condoboard.models.public import OrgRole


async def get_tenant() -> TenantContext:
    """Get the current tenant context (set by TenantMiddleware)."""
    try:
        return get_current_tenant()
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing tenant context")


async def get_principal(request: Request) -> Principal:
    """Authenticate the caller from the Authorization bearer token."""
    token = bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decode_principal(token)


async def require_member(
    principal: Principal = Depends(get_principal),
    tenant: TenantContext = Depends(get_tenant),
) -> Principal:
    """Any role in the current tenant."""
    if principal.role_in(tenant.tenant_slug) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a member of this tenant")
    return principal


async def require_staff(
    principal: Principal = Depends(get_principal),
    tenant: TenantContext = Depends(get_tenant),
) -> Principal:
    """A management role (anything but resident) in the current tenant."""
    if not principal.is_staff_in(tenant.tenant_slug):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return principal


async def require_platform_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.platform_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Platform admin required")
    return principal


def is_resident(principal: Principal, tenant: TenantContext) -> bool:
    return principal.role_in(tenant.tenant_slug) == OrgRole.RESIDENT


# ── Services ────────────────────────────────────────────────────────────────


def _service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_tenant_service(request: Request) -> Any:
    return _service(request, "tenant_service", "Tenant provisioning")


def get_budget_service(request: Request) -> Any:
    return _service(request, "budget_service", "Budget service")


def get_approval_service(request: Request) -> Any:
    return _service(request, "approval_service", "Budget approvals")


def get_ledger_service(request: Request) -> Any:
    return _service(request, "ledger_service", "Ledger")


def get_document_service(request: Request) -> Any:
    return _service(request, "document_service", "Documents")


def get_fee_service(request: Request) -> Any:
    return _service(request, "fee_service", "Fees")
