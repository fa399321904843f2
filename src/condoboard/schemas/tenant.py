"""Pydantic schemas for tenant provisioning."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ProvisioningStage(str, Enum):
    """Named intermediate states of the provisioning saga, in order."""

    REGISTERED = "registered"  # tenant row committed, empty schema created
    MIGRATED = "migrated"  # tenant migrations applied
    OWNED = "owned"  # org_owner membership recorded


class TenantCreate(BaseModel):
    """Request schema for creating a new tenant."""

    slug: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r"^[a-z0-9_-]+$",
        description="Unique tenant identifier (lowercase alphanumeric, underscore, hyphen)",
        examples=["riverside", "oak-towers"],
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Human-readable tenant name",
        examples=["Riverside Condominiums"],
    )
    owner_user_id: int = Field(..., gt=0)


class TenantRead(BaseModel):
    """Response schema for tenant data."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    schema_name: str
    logo: str | None = None
    address: str | None = None
    currency: str | None = None
    created_at: datetime | None = None


class TenantRepair(BaseModel):
    owner_user_id: int | None = Field(default=None, gt=0)


class ProvisioningReport(BaseModel):
    """Outcome of create_tenant / repair_tenant."""

    tenant: TenantRead
    stage: ProvisioningStage
    schema_created: bool = False
    applied_migrations: list[str] = Field(default_factory=list)
    owner_assigned: bool = False
