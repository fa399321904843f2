"""Tenant schema resolution and request-scoped tenant context.

resolve_schema() is the only place a tenant slug becomes a schema name, and
the statement builders below are the only places a schema name is placed in
SQL identifier position. The slug is never a bound parameter there, so the
allow-list check must run before any of them.

The TenantContext is set by middleware at the start of each request and is
accessible anywhere in the call stack via get_current_tenant().
"""

from __future__ import annotations

import contextvars
import re
from dataclasses import dataclass
from typing import NewType

from sqlalchemy import TextClause, text

from src.condoboard.core.errors import InvalidTenantIdentifier

SchemaName = NewType("SchemaName", str)

SLUG_PATTERN = re.compile(r"[a-z0-9_-]+")
MAX_SLUG_LENGTH = 64
SCHEMA_PREFIX = "tenant_"


# ── Schema Resolution ───────────────────────────────────────────────────────


def validate_slug(slug: object) -> str:
    """Return the slug unchanged if it is a legal tenant identifier."""
    if not isinstance(slug, str) or not slug or len(slug) > MAX_SLUG_LENGTH:
        raise InvalidTenantIdentifier(slug)
    # fullmatch: "$" would also accept a trailing newline
    if SLUG_PATTERN.fullmatch(slug) is None:
        raise InvalidTenantIdentifier(slug)
    return slug


def resolve_schema(slug: object) -> SchemaName:
    """Map a tenant slug to its schema name, e.g. "my-condo" -> "tenant_my-condo"."""
    return SchemaName(f"{SCHEMA_PREFIX}{validate_slug(slug)}")


def search_path_statement(schema: SchemaName) -> TextClause:
    """SET LOCAL search_path for the current transaction only."""
    return text(f'SET LOCAL search_path TO "{schema}", public')


def create_schema_statement(schema: SchemaName) -> TextClause:
    return text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"')


# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant context for the current request."""

    tenant_id: int
    tenant_slug: str
    schema_name: str  # e.g., "tenant_skyvera"


_tenant_context: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("tenant_context")


def get_current_tenant() -> TenantContext:
    """Get the tenant context for the current request.

    Raises RuntimeError if no tenant context has been set (i.e., the call
    is not within a tenant-scoped request).
    """
    try:
        return _tenant_context.get()
    except LookupError:
        raise RuntimeError("No tenant context set -- request is not tenant-scoped")


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Set the tenant context for the current request. Returns a token for reset."""
    return _tenant_context.set(ctx)


def reset_tenant_context(token: contextvars.Token[TenantContext]) -> None:
    _tenant_context.reset(token)
