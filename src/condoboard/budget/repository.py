"""Budget repository -- async queries over one tenant's budget tables.

BudgetRepository wraps the AsyncSession handed out by Database.with_tenant(),
so every query runs in the caller's transaction against the bound tenant's
schema. Methods return Pydantic read models, never ORM instances, so nothing
lazy-loads after the transaction ends.

Services receive a ``repository_factory`` (defaults to this class) so tests
can substitute an in-memory double.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.condoboard.budget.schemas import (
    ApprovalRead,
    BudgetLineRead,
    BudgetPeriodListItem,
    BudgetPeriodRead,
    BuildingRead,
    ContributionRead,
    DocumentRead,
    FeeTemplateRead,
    MissingPaymentRead,
    Recipient,
    TransactionRead,
    UnitFeeRead,
    UnitRead,
)
from src.condoboard.models.public import User
from src.condoboard.models.tenant import (
    BudgetApprovalModel,
    BudgetLineModel,
    BudgetMissingPaymentModel,
    BudgetPeriodDocumentModel,
    BudgetPeriodModel,
    BudgetUnitContributionModel,
    BuildingFinancialsModel,
    BuildingModel,
    DocumentModel,
    FeeTemplateModel,
    FinancialTransactionModel,
    UnitFeeModel,
    UnitMemberModel,
    UnitModel,
)
from src.condoboard.services.audit import log_audit

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")


class BudgetRepository:
    """Queries over one tenant's property, fee, budget, document and ledger tables."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ── Buildings & Units ───────────────────────────────────────────────────

    async def get_building(self, building_id: int) -> BuildingRead | None:
        building = await self._session.get(BuildingModel, building_id)
        return BuildingRead.model_validate(building) if building is not None else None

    async def list_units(self, building_id: int) -> list[UnitRead]:
        result = await self._session.execute(
            select(UnitModel).where(UnitModel.building_id == building_id).order_by(UnitModel.id)
        )
        return [UnitRead.model_validate(u) for u in result.scalars()]

    async def count_units(self, building_id: int) -> int:
        result = await self._session.execute(
            select(func.count(UnitModel.id)).where(UnitModel.building_id == building_id)
        )
        return int(result.scalar_one())

    # ── Fees ────────────────────────────────────────────────────────────────

    async def list_fee_templates(self, building_id: int) -> list[FeeTemplateRead]:
        """Templates for this building plus the building-agnostic ones."""
        result = await self._session.execute(
            select(FeeTemplateModel)
            .where(
                or_(
                    FeeTemplateModel.building_id == building_id,
                    FeeTemplateModel.building_id.is_(None),
                )
            )
            .order_by(FeeTemplateModel.id)
        )
        return [FeeTemplateRead.model_validate(t) for t in result.scalars()]

    async def get_fee_template(self, template_id: int) -> FeeTemplateRead | None:
        template = await self._session.get(FeeTemplateModel, template_id)
        return FeeTemplateRead.model_validate(template) if template is not None else None

    async def list_all_fee_templates(self, building_id: int | None = None) -> list[FeeTemplateRead]:
        """Newest first. With building_id, only templates bound to that building."""
        stmt = select(FeeTemplateModel).order_by(FeeTemplateModel.id.desc())
        if building_id is not None:
            stmt = stmt.where(FeeTemplateModel.building_id == building_id)
        result = await self._session.execute(stmt)
        return [FeeTemplateRead.model_validate(t) for t in result.scalars()]

    async def insert_fee_template(
        self, name: str, amount: Decimal, frequency: str, building_id: int | None = None
    ) -> FeeTemplateRead:
        template = FeeTemplateModel(name=name, amount=amount, frequency=frequency, building_id=building_id)
        self._session.add(template)
        await self._session.flush()
        await self._session.refresh(template)
        return FeeTemplateRead.model_validate(template)

    async def update_fee_template(self, template_id: int, **values: Any) -> FeeTemplateRead | None:
        template = await self._session.get(FeeTemplateModel, template_id)
        if template is None:
            return None
        for key, value in values.items():
            setattr(template, key, value)
        await self._session.flush()
        return FeeTemplateRead.model_validate(template)

    async def delete_fee_template(self, template_id: int) -> bool:
        result = await self._session.execute(delete(FeeTemplateModel).where(FeeTemplateModel.id == template_id))
        return result.rowcount > 0

    async def get_unit_fee(self, unit_fee_id: int) -> UnitFeeRead | None:
        unit_fee = await self._session.get(UnitFeeModel, unit_fee_id)
        return UnitFeeRead.model_validate(unit_fee) if unit_fee is not None else None

    async def list_unit_fees(
        self, unit_id: int | None = None, building_id: int | None = None
    ) -> list[UnitFeeRead]:
        """Fees of one unit, or of every unit in a building, latest effective_from first.

        Without a filter, every unit fee newest id first.
        """
        stmt = select(UnitFeeModel)
        if unit_id is not None:
            stmt = stmt.where(UnitFeeModel.unit_id == unit_id)
        elif building_id is not None:
            stmt = stmt.join(UnitModel, UnitModel.id == UnitFeeModel.unit_id).where(
                UnitModel.building_id == building_id
            )
        if unit_id is None and building_id is None:
            stmt = stmt.order_by(UnitFeeModel.id.desc())
        else:
            stmt = stmt.order_by(UnitFeeModel.effective_from.desc(), UnitFeeModel.id.desc())
        result = await self._session.execute(stmt)
        return [UnitFeeRead.model_validate(f) for f in result.scalars()]

    async def insert_unit_fee(
        self,
        unit_id: int,
        amount: Decimal,
        frequency: str,
        effective_from: date,
        effective_until: date | None = None,
        fee_template_id: int | None = None,
    ) -> UnitFeeRead:
        unit_fee = UnitFeeModel(
            unit_id=unit_id,
            amount=amount,
            frequency=frequency,
            effective_from=effective_from,
            effective_until=effective_until,
            fee_template_id=fee_template_id,
        )
        self._session.add(unit_fee)
        await self._session.flush()
        await self._session.refresh(unit_fee)
        return UnitFeeRead.model_validate(unit_fee)

    async def update_unit_fee(self, unit_fee_id: int, **values: Any) -> UnitFeeRead | None:
        unit_fee = await self._session.get(UnitFeeModel, unit_fee_id)
        if unit_fee is None:
            return None
        for key, value in values.items():
            setattr(unit_fee, key, value)
        await self._session.flush()
        return UnitFeeRead.model_validate(unit_fee)

    async def delete_unit_fee(self, unit_fee_id: int) -> bool:
        result = await self._session.execute(delete(UnitFeeModel).where(UnitFeeModel.id == unit_fee_id))
        return result.rowcount > 0

    # ── Members ─────────────────────────────────────────────────────────────

    async def list_unit_recipients(self, unit_ids: Sequence[int]) -> dict[int, list[Recipient]]:
        """Members of each unit with their public.users e-mail."""
        if not unit_ids:
            return {}
        result = await self._session.execute(
            select(UnitMemberModel.unit_id, User.id, User.email, User.name)
            .join(User, User.id == UnitMemberModel.user_id)
            .where(UnitMemberModel.unit_id.in_(list(unit_ids)))
            .order_by(UnitMemberModel.unit_id, UnitMemberModel.id)
        )
        recipients: dict[int, list[Recipient]] = {}
        for unit_id, user_id, email, name in result:
            recipients.setdefault(unit_id, []).append(Recipient(user_id=user_id, email=email, name=name))
        return recipients

    async def list_member_building_ids(self, user_id: int) -> list[int]:
        """Buildings in which the user belongs to at least one unit."""
        result = await self._session.execute(
            select(UnitModel.building_id)
            .join(UnitMemberModel, UnitMemberModel.unit_id == UnitModel.id)
            .where(UnitMemberModel.user_id == user_id)
            .distinct()
        )
        return sorted(result.scalars())

    # ── Periods ─────────────────────────────────────────────────────────────

    async def insert_period(
        self,
        building_id: int,
        name: str,
        year: int,
        opening_balance: Decimal,
        start_date: date,
        end_date: date,
        created_by: int,
    ) -> BudgetPeriodRead:
        period = BudgetPeriodModel(
            building_id=building_id,
            name=name,
            year=year,
            opening_balance=opening_balance,
            start_date=start_date,
            end_date=end_date,
            created_by=created_by,
        )
        self._session.add(period)
        await self._session.flush()
        await self._session.refresh(period)
        return BudgetPeriodRead.model_validate(period)

    async def get_period(self, period_id: int, for_update: bool = False) -> BudgetPeriodRead | None:
        stmt = select(BudgetPeriodModel).where(BudgetPeriodModel.id == period_id)
        if for_update:
            stmt = stmt.with_for_update()
        period = (await self._session.execute(stmt)).scalar_one_or_none()
        return BudgetPeriodRead.model_validate(period) if period is not None else None

    async def find_previous_period(self, building_id: int, year: int) -> BudgetPeriodRead | None:
        """Most recent earlier-year period of the same building."""
        result = await self._session.execute(
            select(BudgetPeriodModel)
            .where(BudgetPeriodModel.building_id == building_id, BudgetPeriodModel.year < year)
            .order_by(BudgetPeriodModel.year.desc(), BudgetPeriodModel.id.desc())
            .limit(1)
        )
        period = result.scalar_one_or_none()
        return BudgetPeriodRead.model_validate(period) if period is not None else None

    async def list_periods(
        self, building_ids: Sequence[int] | None = None
    ) -> list[BudgetPeriodListItem]:
        stmt = (
            select(BudgetPeriodModel, BuildingModel.name)
            .join(BuildingModel, BuildingModel.id == BudgetPeriodModel.building_id)
            .order_by(BudgetPeriodModel.year.desc(), BudgetPeriodModel.id.desc())
        )
        if building_ids is not None:
            stmt = stmt.where(BudgetPeriodModel.building_id.in_(list(building_ids)))
        result = await self._session.execute(stmt)
        return [
            BudgetPeriodListItem(
                **BudgetPeriodRead.model_validate(period).model_dump(), building_name=building_name
            )
            for period, building_name in result
        ]

    async def update_period(self, period_id: int, **values: Any) -> BudgetPeriodRead | None:
        period = await self._session.get(BudgetPeriodModel, period_id)
        if period is None:
            return None
        for key, value in values.items():
            setattr(period, key, value)
        await self._session.flush()
        await self._session.refresh(period)
        return BudgetPeriodRead.model_validate(period)

    async def delete_period(self, period_id: int) -> bool:
        """Detach ledger entries, then delete the period (children cascade)."""
        await self._session.execute(
            update(FinancialTransactionModel)
            .where(FinancialTransactionModel.budget_period_id == period_id)
            .values(budget_period_id=None)
        )
        result = await self._session.execute(
            delete(BudgetPeriodModel).where(BudgetPeriodModel.id == period_id)
        )
        return result.rowcount > 0

    # ── Lines ───────────────────────────────────────────────────────────────

    async def insert_line(
        self,
        period_id: int,
        category: str,
        description: str,
        amount: Decimal,
        sort_order: int,
    ) -> BudgetLineRead:
        line = BudgetLineModel(
            budget_period_id=period_id,
            category=category,
            description=description,
            amount=amount,
            sort_order=sort_order,
        )
        self._session.add(line)
        await self._session.flush()
        return BudgetLineRead.model_validate(line)

    async def list_lines(self, period_id: int) -> list[BudgetLineRead]:
        result = await self._session.execute(
            select(BudgetLineModel)
            .where(BudgetLineModel.budget_period_id == period_id)
            .order_by(BudgetLineModel.sort_order, BudgetLineModel.id)
        )
        return [BudgetLineRead.model_validate(line) for line in result.scalars()]

    async def next_line_sort_order(self, period_id: int) -> int:
        result = await self._session.execute(
            select(func.max(BudgetLineModel.sort_order)).where(
                BudgetLineModel.budget_period_id == period_id
            )
        )
        current = result.scalar_one_or_none()
        return 0 if current is None or current < 0 else current + 1

    async def update_line(self, period_id: int, line_id: int, **values: Any) -> BudgetLineRead | None:
        line = await self._session.get(BudgetLineModel, line_id)
        if line is None or line.budget_period_id != period_id:
            return None
        for key, value in values.items():
            setattr(line, key, value)
        await self._session.flush()
        return BudgetLineRead.model_validate(line)

    async def delete_line(self, period_id: int, line_id: int) -> bool:
        result = await self._session.execute(
            delete(BudgetLineModel).where(
                BudgetLineModel.id == line_id, BudgetLineModel.budget_period_id == period_id
            )
        )
        return result.rowcount > 0

    # ── Contributions ───────────────────────────────────────────────────────

    async def insert_contributions(self, period_id: int, unit_ids: Sequence[int], amount: Decimal) -> int:
        for unit_id in unit_ids:
            self._session.add(
                BudgetUnitContributionModel(budget_period_id=period_id, unit_id=unit_id, amount=amount)
            )
        await self._session.flush()
        return len(unit_ids)

    async def list_contributions(self, period_id: int) -> list[ContributionRead]:
        result = await self._session.execute(
            select(BudgetUnitContributionModel)
            .where(BudgetUnitContributionModel.budget_period_id == period_id)
            .order_by(BudgetUnitContributionModel.unit_id)
        )
        return [ContributionRead.model_validate(c) for c in result.scalars()]

    async def upsert_contribution(self, period_id: int, unit_id: int, amount: Decimal) -> ContributionRead:
        stmt = pg_insert(BudgetUnitContributionModel).values(
            budget_period_id=period_id, unit_id=unit_id, amount=amount
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["budget_period_id", "unit_id"],
            set_={"amount": stmt.excluded.amount},
        ).returning(BudgetUnitContributionModel)
        result = await self._session.execute(stmt)
        return ContributionRead.model_validate(result.scalar_one())

    async def get_unit(self, unit_id: int) -> UnitRead | None:
        unit = await self._session.get(UnitModel, unit_id)
        return UnitRead.model_validate(unit) if unit is not None else None

    # ── Missing Payments ────────────────────────────────────────────────────

    async def insert_missing_payment(
        self, period_id: int, unit_id: int, amount: Decimal, reason: str | None = None
    ) -> MissingPaymentRead:
        row = BudgetMissingPaymentModel(
            budget_period_id=period_id, unit_id=unit_id, amount=amount, reason=reason
        )
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return MissingPaymentRead.model_validate(row)

    async def list_missing_payments(self, period_id: int) -> list[MissingPaymentRead]:
        result = await self._session.execute(
            select(BudgetMissingPaymentModel)
            .where(BudgetMissingPaymentModel.budget_period_id == period_id)
            .order_by(BudgetMissingPaymentModel.id)
        )
        return [MissingPaymentRead.model_validate(m) for m in result.scalars()]

    async def delete_missing_payment(self, period_id: int, missing_payment_id: int) -> bool:
        result = await self._session.execute(
            delete(BudgetMissingPaymentModel).where(
                BudgetMissingPaymentModel.id == missing_payment_id,
                BudgetMissingPaymentModel.budget_period_id == period_id,
            )
        )
        return result.rowcount > 0

    # ── Approvals ───────────────────────────────────────────────────────────

    async def count_approvals(self, period_id: int) -> int:
        result = await self._session.execute(
            select(func.count(BudgetApprovalModel.id)).where(
                BudgetApprovalModel.budget_period_id == period_id
            )
        )
        return int(result.scalar_one())

    async def insert_approvals(self, period_id: int, tokens: dict[int, str]) -> None:
        for unit_id, token in tokens.items():
            self._session.add(
                BudgetApprovalModel(budget_period_id=period_id, unit_id=unit_id, token=token)
            )
        await self._session.flush()

    async def get_approval(self, period_id: int, token: str) -> ApprovalRead | None:
        """Approval row matching both period and token, locked for the transaction."""
        result = await self._session.execute(
            select(BudgetApprovalModel)
            .where(
                BudgetApprovalModel.budget_period_id == period_id,
                BudgetApprovalModel.token == token,
            )
            .with_for_update()
        )
        approval = result.scalar_one_or_none()
        return ApprovalRead.model_validate(approval) if approval is not None else None

    async def mark_approved(self, approval_id: int, at: datetime) -> None:
        await self._session.execute(
            update(BudgetApprovalModel)
            .where(BudgetApprovalModel.id == approval_id)
            .values(approved_at=at)
        )

    async def mark_rejected(self, approval_id: int, at: datetime, reason: str | None) -> None:
        await self._session.execute(
            update(BudgetApprovalModel)
            .where(BudgetApprovalModel.id == approval_id)
            .values(rejected_at=at, rejection_reason=reason)
        )

    async def count_approved_units(self, period_id: int) -> int:
        result = await self._session.execute(
            select(func.count(func.distinct(BudgetApprovalModel.unit_id))).where(
                BudgetApprovalModel.budget_period_id == period_id,
                BudgetApprovalModel.approved_at.is_not(None),
            )
        )
        return int(result.scalar_one())

    # ── Documents ───────────────────────────────────────────────────────────

    async def get_document(self, document_id: int) -> DocumentRead | None:
        document = await self._session.get(DocumentModel, document_id)
        return DocumentRead.model_validate(document) if document is not None else None

    async def insert_document(
        self, title: str, file_key: str, filename: str, uploaded_by: int, building_id: int | None = None
    ) -> DocumentRead:
        document = DocumentModel(
            title=title,
            file_key=file_key,
            filename=filename,
            uploaded_by=uploaded_by,
            building_id=building_id,
        )
        self._session.add(document)
        await self._session.flush()
        await self._session.refresh(document)
        return DocumentRead.model_validate(document)

    async def list_documents(
        self, building_id: int | None = None, limit: int = 50, offset: int = 0
    ) -> list[DocumentRead]:
        query = select(DocumentModel)
        if building_id is not None:
            query = query.where(DocumentModel.building_id == building_id)
        result = await self._session.execute(
            query.order_by(DocumentModel.created_at.desc(), DocumentModel.id.desc()).limit(limit).offset(offset)
        )
        return [DocumentRead.model_validate(d) for d in result.scalars()]

    async def delete_document(self, document_id: int) -> bool:
        result = await self._session.execute(delete(DocumentModel).where(DocumentModel.id == document_id))
        return result.rowcount > 0

    async def list_period_documents(self, period_id: int) -> list[DocumentRead]:
        result = await self._session.execute(
            select(DocumentModel)
            .join(BudgetPeriodDocumentModel, BudgetPeriodDocumentModel.document_id == DocumentModel.id)
            .where(BudgetPeriodDocumentModel.budget_period_id == period_id)
            .order_by(BudgetPeriodDocumentModel.id)
        )
        return [DocumentRead.model_validate(d) for d in result.scalars()]

    async def is_document_attached(self, period_id: int, document_id: int) -> bool:
        result = await self._session.execute(
            select(BudgetPeriodDocumentModel.id).where(
                BudgetPeriodDocumentModel.budget_period_id == period_id,
                BudgetPeriodDocumentModel.document_id == document_id,
            )
        )
        return result.first() is not None

    async def attach_document(self, period_id: int, document_id: int) -> None:
        self._session.add(BudgetPeriodDocumentModel(budget_period_id=period_id, document_id=document_id))
        await self._session.flush()

    async def detach_document(self, period_id: int, document_id: int) -> bool:
        result = await self._session.execute(
            delete(BudgetPeriodDocumentModel).where(
                BudgetPeriodDocumentModel.budget_period_id == period_id,
                BudgetPeriodDocumentModel.document_id == document_id,
            )
        )
        return result.rowcount > 0

    # ── Ledger ──────────────────────────────────────────────────────────────

    async def get_or_create_balance(self, building_id: int) -> Decimal:
        """Current balance, creating a zero-balance row on first use."""
        financials = await self._session.get(BuildingFinancialsModel, building_id)
        if financials is not None:
            return financials.current_balance
        await self._session.execute(
            pg_insert(BuildingFinancialsModel)
            .values(building_id=building_id, current_balance=ZERO)
            .on_conflict_do_nothing(index_elements=["building_id"])
        )
        return ZERO

    async def get_balance(self, building_id: int) -> Decimal | None:
        financials = await self._session.get(BuildingFinancialsModel, building_id)
        return financials.current_balance if financials is not None else None

    async def add_to_balance(self, building_id: int, amount: Decimal) -> Decimal:
        stmt = pg_insert(BuildingFinancialsModel).values(building_id=building_id, current_balance=amount)
        stmt = stmt.on_conflict_do_update(
            index_elements=["building_id"],
            set_={
                "current_balance": BuildingFinancialsModel.current_balance + stmt.excluded.current_balance,
                "updated_at": func.now(),
            },
        ).returning(BuildingFinancialsModel.current_balance)
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def insert_transaction(
        self,
        building_id: int,
        amount: Decimal,
        created_by: int,
        unit_id: int | None = None,
        budget_period_id: int | None = None,
        description: str | None = None,
    ) -> TransactionRead:
        transaction = FinancialTransactionModel(
            building_id=building_id,
            amount=amount,
            unit_id=unit_id,
            budget_period_id=budget_period_id,
            description=description,
            created_by=created_by,
        )
        self._session.add(transaction)
        await self._session.flush()
        await self._session.refresh(transaction)
        return TransactionRead.model_validate(transaction)

    async def total_paid_by_unit(self, period_id: int) -> dict[int, Decimal]:
        result = await self._session.execute(
            select(FinancialTransactionModel.unit_id, func.sum(FinancialTransactionModel.amount))
            .where(
                FinancialTransactionModel.budget_period_id == period_id,
                FinancialTransactionModel.unit_id.is_not(None),
            )
            .group_by(FinancialTransactionModel.unit_id)
        )
        return {unit_id: total for unit_id, total in result}

    # ── Audit ───────────────────────────────────────────────────────────────

    async def record_audit(
        self,
        actor_id: int,
        action: str,
        entity_type: str,
        entity_id: int | str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        await log_audit(self._session, actor_id, action, entity_type, entity_id, details)
