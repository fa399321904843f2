"""API middleware package."""

from src.condoboard.api.middleware.logging import LoggingMiddleware
from src.condoboard.api.middleware.tenant import TenantMiddleware

__all__ = ["LoggingMiddleware", "TenantMiddleware"]
