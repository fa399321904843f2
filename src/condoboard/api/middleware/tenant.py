"""Tenant resolution middleware.

Resolves the tenant slug from:
1. X-Tenant-Slug header (public approval links, service calls)
2. tenant_slug claim of the bearer JWT

The slug is looked up through the tenant directory (Redis-cached), then the
TenantContext is set in contextvars for the request scope.
"""

from __future__ import annotations

import structlog
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.condoboard.api.middleware.logging import TENANT_STATE_KEY
from src.condoboard.config import get_settings
from src.condoboard.core.errors import InvalidTenantIdentifier
from src.condoboard.core.security import bearer_token
from src.condoboard.core.tenant import TenantContext, reset_tenant_context, set_tenant_context

logger = structlog.get_logger(__name__)

TENANT_HEADER = "X-Tenant-Slug"
SKIP_TENANT_PATHS = ("/health", "/api/v1/tenants", "/docs", "/redoc", "/openapi.json")


class TenantMiddleware(BaseHTTPMiddleware):
    """Binds each tenant-scoped request to one tenant.

    Paths in SKIP_TENANT_PATHS are passed through untouched.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        slug = request.headers.get(TENANT_HEADER) or self._slug_from_jwt(request)
        if not slug:
            return _error(
                status.HTTP_400_BAD_REQUEST,
                f"Missing tenant context. Provide the {TENANT_HEADER} header or a token with tenant_slug.",
            )

        directory = getattr(request.app.state, "tenant_service", None)
        if directory is None:
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Tenant directory not initialized")

        try:
            tenant = await directory.get_tenant_by_slug(slug)
        except InvalidTenantIdentifier as exc:
            return _error(status.HTTP_400_BAD_REQUEST, exc.message)
        if tenant is None:
            return _error(status.HTTP_404_NOT_FOUND, "Tenant not found")

        setattr(request.state, TENANT_STATE_KEY, tenant.slug)
        token = set_tenant_context(
            TenantContext(tenant_id=tenant.id, tenant_slug=tenant.slug, schema_name=tenant.schema_name)
        )
        try:
            return await call_next(request)
        finally:
            reset_tenant_context(token)

    @staticmethod
    def _slug_from_jwt(request: Request) -> str | None:
        token = bearer_token(request.headers.get("Authorization"))
        if token is None:
            return None
        settings = get_settings()
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except JWTError:
            # Authentication is enforced by the route dependencies
            return None
        slug = payload.get("tenant_slug")
        return slug if isinstance(slug, str) else None


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})
