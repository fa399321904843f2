"""Pydantic schemas for the budget workflow.

Defines the structured types passed between repository, services and routes:
- Read models: BuildingRead, UnitRead, FeeTemplateRead, UnitFeeRead,
  BudgetPeriodRead, BudgetLineRead, ContributionRead, MissingPaymentRead,
  ApprovalRead, DocumentRead, PublicDocumentRead, Recipient
- Payloads: BudgetPeriodCreate/Update, BudgetLineCreate/Update,
  ContributionSet, MissingPaymentCreate, FeeTemplateCreate/Update,
  UnitFeeCreate/Update, RejectRequest, TransactionCreate
- Results: SendForApprovalResult, ApprovalOutcome, BudgetPeriodDetail,
  ApprovalInfo, BalanceRead
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.condoboard.models.tenant import BudgetLineCategory, BudgetStatus, FeeFrequency


# ── Enums ───────────────────────────────────────────────────────────────────


class SendOutcome(str, Enum):
    SENT = "sent"
    ALREADY_DONE = "already_done"


class ResponseOutcome(str, Enum):
    """What a resident's approve/reject call did."""

    RECORDED = "recorded"
    ALREADY_APPROVED = "already_approved"
    ALREADY_REJECTED = "already_rejected"


# ── Read Models ─────────────────────────────────────────────────────────────


class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class BuildingRead(_ReadModel):
    id: int
    name: str
    address: str | None = None


class UnitRead(_ReadModel):
    id: int
    building_id: int
    identifier: str


class Recipient(BaseModel):
    """A unit member who receives approval notices."""

    user_id: int
    email: str
    name: str | None = None


class FeeTemplateRead(_ReadModel):
    id: int
    name: str
    amount: Decimal
    frequency: str
    building_id: int | None = None
    created_at: datetime | None = None


class UnitFeeRead(_ReadModel):
    id: int
    unit_id: int
    fee_template_id: int | None = None
    amount: Decimal
    frequency: FeeFrequency
    effective_from: date
    effective_until: date | None = None
    created_at: datetime | None = None


class BudgetPeriodRead(_ReadModel):
    id: int
    building_id: int
    name: str
    year: int
    opening_balance: Decimal
    status: BudgetStatus
    start_date: date | None = None
    end_date: date | None = None
    created_by: int
    created_at: datetime | None = None
    sent_for_approval_at: datetime | None = None
    approved_at: datetime | None = None


class BudgetPeriodListItem(BudgetPeriodRead):
    building_name: str


class BudgetLineRead(_ReadModel):
    id: int
    budget_period_id: int
    category: BudgetLineCategory
    description: str
    amount: Decimal
    sort_order: int


class ContributionRead(_ReadModel):
    id: int
    budget_period_id: int
    unit_id: int
    amount: Decimal


class MissingPaymentRead(_ReadModel):
    id: int
    budget_period_id: int
    unit_id: int
    amount: Decimal
    reason: str | None = None
    created_at: datetime | None = None


class ApprovalRead(_ReadModel):
    """Per-unit approval row. The token never leaves the service layer."""

    id: int
    budget_period_id: int
    unit_id: int
    token: str
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None


class DocumentRead(_ReadModel):
    id: int
    title: str
    filename: str
    file_key: str
    building_id: int | None = None


class PublicDocumentRead(_ReadModel):
    """Document as shown on the unauthenticated approval page; no storage key."""

    id: int
    title: str
    filename: str


class TransactionRead(_ReadModel):
    id: int
    building_id: int
    amount: Decimal
    unit_id: int | None = None
    budget_period_id: int | None = None
    description: str | None = None
    created_by: int
    created_at: datetime | None = None


# ── Payloads ────────────────────────────────────────────────────────────────


class BudgetPeriodCreate(BaseModel):
    building_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=255)
    year: int = Field(..., ge=2000, le=2100)


class BudgetPeriodUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    start_date: date | None = None
    end_date: date | None = None
    opening_balance: Decimal | None = Field(default=None, max_digits=12, decimal_places=2)


class BudgetLineCreate(BaseModel):
    category: BudgetLineCategory
    description: str = Field(..., min_length=1, max_length=512)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    sort_order: int | None = None


class BudgetLineUpdate(BaseModel):
    category: BudgetLineCategory | None = None
    description: str | None = Field(default=None, min_length=1, max_length=512)
    amount: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    sort_order: int | None = None


class ContributionSet(BaseModel):
    unit_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class MissingPaymentCreate(BaseModel):
    unit_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    reason: str | None = Field(default=None, max_length=512)

    @field_validator("reason")
    @classmethod
    def _blank_reason_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class FeeTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    frequency: FeeFrequency
    building_id: int | None = Field(default=None, gt=0)


class FeeTemplateUpdate(BaseModel):
    """Partial update. building_id may be set to null to make the template building-agnostic."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    amount: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    frequency: FeeFrequency | None = None
    building_id: int | None = Field(default=None, gt=0)


class UnitFeeCreate(BaseModel):
    unit_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    frequency: FeeFrequency
    effective_from: date
    effective_until: date | None = None
    fee_template_id: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _until_not_before_from(self) -> UnitFeeCreate:
        if self.effective_until is not None and self.effective_until < self.effective_from:
            raise ValueError("effective_until must not be before effective_from")
        return self


class UnitFeeUpdate(BaseModel):
    """Partial update. effective_until and fee_template_id may be cleared with null."""

    amount: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    frequency: FeeFrequency | None = None
    effective_from: date | None = None
    effective_until: date | None = None
    fee_template_id: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _until_not_before_from(self) -> UnitFeeUpdate:
        if (
            self.effective_from is not None
            and self.effective_until is not None
            and self.effective_until < self.effective_from
        ):
            raise ValueError("effective_until must not be before effective_from")
        return self


class DocumentAttach(BaseModel):
    document_id: int = Field(..., gt=0)


class RejectRequest(BaseModel):
    token: str
    reason: str | None = None


class ApproveRequest(BaseModel):
    token: str


class TransactionCreate(BaseModel):
    building_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)
    unit_id: int | None = None
    budget_period_id: int | None = None
    description: str | None = Field(default=None, max_length=512)


# ── Results ─────────────────────────────────────────────────────────────────


class SendForApprovalResult(BaseModel):
    outcome: SendOutcome
    period_id: int
    unit_count: int = 0
    notices_sent: int = 0


class ApprovalStats(BaseModel):
    approved_unit_count: int
    required_approval_count: int
    unit_count: int


class ApprovalOutcome(BaseModel):
    """Result of approve_by_token / reject_by_token.

    Quorum figures are only present when an approval was recorded.
    """

    outcome: ResponseOutcome
    message: str
    stats: ApprovalStats | None = None
    quorum_reached: bool | None = None
    period_status: BudgetStatus | None = None


class UnitBudgetStatus(BaseModel):
    id: int
    identifier: str
    contribution: Decimal | None = None
    missing_payment: Decimal | None = None
    total_paid: Decimal = Decimal("0.00")
    paid: bool = False


class BudgetPeriodDetail(BaseModel):
    period: BudgetPeriodRead
    building_name: str
    lines: list[BudgetLineRead] = Field(default_factory=list)
    contributions: list[ContributionRead] = Field(default_factory=list)
    missing_payments: list[MissingPaymentRead] = Field(default_factory=list)
    units: list[UnitBudgetStatus] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")
    approval_stats: ApprovalStats
    documents: list[DocumentRead] = Field(default_factory=list)


class ApprovalInfo(BaseModel):
    """Public summary shown on the approval page for one unit's link."""

    period_id: int
    name: str
    year: int
    status: BudgetStatus
    building_name: str
    lines: list[BudgetLineRead] = Field(default_factory=list)
    units: list[UnitBudgetStatus] = Field(default_factory=list)
    documents: list[PublicDocumentRead] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")
    opening_balance: Decimal = Decimal("0.00")
    total_contributions: Decimal = Decimal("0.00")
    stats: ApprovalStats
    unit_identifier: str | None = None
    unit_share: Decimal
    can_respond: bool
    already_approved: bool
    already_rejected: bool
    rejection_reason: str | None = None


class BalanceRead(BaseModel):
    building_id: int
    current_balance: Decimal
