"""Per-tenant schema models -- tables duplicated in each tenant's schema.

These models carry no schema name. They are only ever queried inside
Database.with_tenant(), where the search path resolves them to the bound
tenant's schema. The DDL that creates them lives in
src.condoboard.migrations.tenant and must be kept in step with this module.

user_id / actor_id / created_by columns refer to public.users.id but carry
no foreign key: the reference crosses the schema boundary.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.condoboard.core.database import TenantBase

MONEY = Numeric(12, 2)


class BudgetStatus(str, Enum):
    DRAFT = "draft"
    PROPOSED = "proposed"
    APPROVED = "approved"
    CLOSED = "closed"


class BudgetLineCategory(str, Enum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"
    EXTRAS = "extras"


class FeeFrequency(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ResidentRole(str, Enum):
    OWNER = "owner"
    TENANT = "tenant"
    RESIDENT = "resident"


# ── Property ────────────────────────────────────────────────────────────────


class BuildingModel(TenantBase):
    __tablename__ = "buildings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UnitModel(TenantBase):
    __tablename__ = "units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    building_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False
    )
    identifier: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UnitMemberModel(TenantBase):
    """Resident of a unit. user_id points into public.users."""

    __tablename__ = "unit_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── Fees ────────────────────────────────────────────────────────────────────


class FeeTemplateModel(TenantBase):
    """Recurring charge definition. building_id NULL applies to every building."""

    __tablename__ = "fee_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    building_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("buildings.id", ondelete="CASCADE"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UnitFeeModel(TenantBase):
    __tablename__ = "unit_fees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False
    )
    fee_template_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("fee_templates.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── Ledger ──────────────────────────────────────────────────────────────────


class BuildingFinancialsModel(TenantBase):
    """Denormalized running balance, one row per building."""

    __tablename__ = "building_financials"

    building_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("buildings.id", ondelete="CASCADE"), primary_key=True
    )
    current_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class FinancialTransactionModel(TenantBase):
    """Append-only ledger entry. Positive amounts are income."""

    __tablename__ = "financial_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    building_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    unit_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("units.id", ondelete="SET NULL"), nullable=True
    )
    budget_period_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("budget_periods.id", ondelete="SET NULL"), nullable=True
    )
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── Budget ──────────────────────────────────────────────────────────────────


class BudgetPeriodModel(TenantBase):
    """One building's budget for one year.

    draft -> proposed (send for approval) -> approved (quorum) -> closed.
    """

    __tablename__ = "budget_periods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    building_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    opening_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=BudgetStatus.DRAFT.value)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    sent_for_approval_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class BudgetLineModel(TenantBase):
    __tablename__ = "budget_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    budget_period_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("budget_periods.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class BudgetUnitContributionModel(TenantBase):
    __tablename__ = "budget_unit_contributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    budget_period_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("budget_periods.id", ondelete="CASCADE"), nullable=False
    )
    unit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)


class BudgetMissingPaymentModel(TenantBase):
    """Arrears a unit carries into the period, recorded by staff."""

    __tablename__ = "budget_missing_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    budget_period_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("budget_periods.id", ondelete="CASCADE"), nullable=False
    )
    unit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class BudgetApprovalModel(TenantBase):
    """Per-unit approval capability. Terminal once approved_at or rejected_at is set."""

    __tablename__ = "budget_approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    budget_period_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("budget_periods.id", ondelete="CASCADE"), nullable=False
    )
    unit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── Documents & Audit ───────────────────────────────────────────────────────


class DocumentModel(TenantBase):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    file_key: Mapped[str] = mapped_column(String(512), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    building_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("buildings.id", ondelete="SET NULL"), nullable=True
    )
    uploaded_by: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class BudgetPeriodDocumentModel(TenantBase):
    __tablename__ = "budget_period_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    budget_period_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("budget_periods.id", ondelete="CASCADE"), nullable=False
    )
    document_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AuditLogModel(TenantBase):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
