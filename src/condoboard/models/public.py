"""Public schema models -- catalog tables that exist once, outside any tenant.

The Tenant model lives here because it's used for tenant resolution and
is not duplicated per tenant schema. Users are shared across tenants; a
user's role is held per tenant in TenantUser.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from src.condoboard.core.database import PublicBase


class OrgRole(str, Enum):
    ORG_OWNER = "org_owner"
    ORG_ADMIN = "org_admin"
    PROPERTY_MANAGER = "property_manager"
    ACCOUNTANT = "accountant"
    SUPPORT = "support"
    RESIDENT = "resident"


STAFF_ROLES = frozenset(role for role in OrgRole if role is not OrgRole.RESIDENT)


class Tenant(PublicBase):
    """Registered tenant organization.

    Owns exactly one schema, ``tenant_<slug>``. The slug never changes after
    creation since the schema name is derived from it.
    """

    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    logo: Mapped[str | None] = mapped_column(String(512), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class User(PublicBase):
    """Platform user. Tenant tables reference users.id without a foreign key."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class TenantUser(PublicBase):
    """Membership of a user in a tenant with a tenant-scoped role."""

    __tablename__ = "tenant_users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="tenant_users_tenant_id_user_id"),
        {"schema": "public"},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("public.tenants.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("public.users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
