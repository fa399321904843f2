"""Budget period lifecycle: creation, editing and sending for approval.

create_budget_period() snapshots the building balance, computes each unit's
yearly contribution from the fee templates and carries recurring lines over
from the previous year, all in one tenant transaction.

send_for_approval() issues one approval token per unit and moves the period
to "proposed" in one transaction; notices go out only after it commits.
Running it again once tokens exist, or once the period is proposed (a building
without units gets no tokens), is a no-op reported as ``already_done``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.condoboard.budget.calculations import (
    UNIT_CONTRIBUTIONS_DESCRIPTION,
    UNIT_CONTRIBUTIONS_SORT_ORDER,
    ZERO,
    average_share,
    carry_forward,
    contributions_line_amount,
    generate_approval_token,
    lines_total,
    period_dates,
    quantize_money,
    required_approval_count,
    yearly_contribution_per_unit,
)
from src.condoboard.budget.repository import BudgetRepository
from src.condoboard.budget.schemas import (
    ApprovalStats,
    BudgetLineCreate,
    BudgetLineRead,
    BudgetLineUpdate,
    BudgetPeriodDetail,
    BudgetPeriodListItem,
    BudgetPeriodRead,
    BudgetPeriodUpdate,
    ContributionRead,
    DocumentRead,
    MissingPaymentCreate,
    MissingPaymentRead,
    Recipient,
    SendForApprovalResult,
    SendOutcome,
    UnitBudgetStatus,
    UnitRead,
)
from src.condoboard.core.database import Database
from src.condoboard.core.errors import (
    BudgetLineNotFound,
    BudgetPeriodNotFound,
    BuildingNotFound,
    DocumentBuildingMismatch,
    DocumentNotFound,
    InvalidStateTransition,
    MissingPaymentNotFound,
    UnitNotFound,
)
from src.condoboard.models.tenant import BudgetLineCategory, BudgetStatus
from src.condoboard.services.notify import ApprovalNotice, Notifier

logger = structlog.get_logger(__name__)

RepositoryFactory = Callable[[AsyncSession], BudgetRepository]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Dispatch:
    """Everything needed to send notices once the transaction has committed."""

    period: BudgetPeriodRead
    units: list[UnitRead]
    tokens: dict[int, str]
    shares: dict[int, Decimal]
    recipients: dict[int, list[Recipient]] = field(default_factory=dict)


def unit_statuses(
    units: list[UnitRead],
    contributions: list[ContributionRead],
    paid_by_unit: dict[int, Decimal],
    missing_payments: list[MissingPaymentRead] | None = None,
) -> list[UnitBudgetStatus]:
    """Per-unit contribution and payment state. A unit is paid once it covers a non-zero contribution.

    missing_payment is the sum of the unit's recorded arrears, None when it has none.
    """
    by_unit = {c.unit_id: c.amount for c in contributions}
    missing_by_unit: dict[int, Decimal] = {}
    for missing in missing_payments or []:
        missing_by_unit[missing.unit_id] = missing_by_unit.get(missing.unit_id, ZERO) + missing.amount
    statuses = []
    for unit in units:
        contribution = by_unit.get(unit.id)
        total_paid = quantize_money(paid_by_unit.get(unit.id, ZERO))
        owed = contribution if contribution is not None else ZERO
        statuses.append(
            UnitBudgetStatus(
                id=unit.id,
                identifier=unit.identifier,
                contribution=contribution,
                missing_payment=missing_by_unit.get(unit.id),
                total_paid=total_paid,
                paid=owed > 0 and total_paid >= owed,
            )
        )
    return statuses


class BudgetService:
    """Budget periods with their lines, contributions, arrears and documents.

    Args:
        database: Shared Database handle.
        notifier: Sends approval notices; None disables sending.
        repository_factory: Builds the repository from a session.
        clock: Source of "now" for status timestamps.
        token_factory: Generates approval tokens.
    """

    def __init__(
        self,
        database: Database,
        notifier: Notifier | None = None,
        repository_factory: RepositoryFactory = BudgetRepository,
        clock: Clock = utcnow,
        token_factory: Callable[[], str] = generate_approval_token,
    ) -> None:
        self._database = database
        self._notifier = notifier
        self._repository_factory = repository_factory
        self._clock = clock
        self._token_factory = token_factory

    @staticmethod
    async def _require_period(
        repo: BudgetRepository, period_id: int, for_update: bool = False
    ) -> BudgetPeriodRead:
        period = await repo.get_period(period_id, for_update=for_update)
        if period is None:
            raise BudgetPeriodNotFound(period_id)
        return period

    # ── Create ──────────────────────────────────────────────────────────────

    async def create_budget_period(
        self, slug: str, building_id: int, name: str, year: int, actor_id: int
    ) -> BudgetPeriodRead:
        """Create a draft period with contributions and carried-forward lines.

        Raises:
            BuildingNotFound: No such building in this tenant.
        """

        async def _create(session: AsyncSession) -> BudgetPeriodRead:
            repo = self._repository_factory(session)
            if await repo.get_building(building_id) is None:
                raise BuildingNotFound(building_id)

            opening_balance = await repo.get_or_create_balance(building_id)
            start_date, end_date = period_dates(year)
            period = await repo.insert_period(
                building_id=building_id,
                name=name,
                year=year,
                opening_balance=opening_balance,
                start_date=start_date,
                end_date=end_date,
                created_by=actor_id,
            )

            units = await repo.list_units(building_id)
            per_unit = yearly_contribution_per_unit(await repo.list_fee_templates(building_id))
            if units:
                await repo.insert_contributions(period.id, [u.id for u in units], per_unit)
            await repo.insert_line(
                period.id,
                BudgetLineCategory.RECURRING.value,
                UNIT_CONTRIBUTIONS_DESCRIPTION,
                contributions_line_amount(per_unit, len(units)),
                UNIT_CONTRIBUTIONS_SORT_ORDER,
            )

            previous = await repo.find_previous_period(building_id, year)
            carried = carry_forward(await repo.list_lines(previous.id)) if previous is not None else []
            for description, amount, sort_order in carried:
                await repo.insert_line(
                    period.id, BudgetLineCategory.RECURRING.value, description, amount, sort_order
                )

            await repo.record_audit(
                actor_id,
                "create",
                "budget_period",
                period.id,
                {"building_id": building_id, "year": year, "name": name},
            )
            logger.info(
                "budget_period_created",
                tenant=slug,
                period_id=period.id,
                building_id=building_id,
                year=year,
                unit_count=len(units),
                contribution_per_unit=str(per_unit),
                carried_lines=len(carried),
            )
            return period

        return await self._database.with_tenant(slug, _create)

    # ── Send for Approval ───────────────────────────────────────────────────

    async def send_for_approval(self, slug: str, period_id: int, actor_id: int) -> SendForApprovalResult:
        """Issue per-unit approval tokens, then notify unit members.

        Raises:
            BudgetPeriodNotFound: No such period.
            InvalidStateTransition: Period is approved or closed and has no tokens.
        """
        now = self._clock()

        async def _issue(session: AsyncSession) -> _Dispatch | int:
            repo = self._repository_factory(session)
            period = await self._require_period(repo, period_id, for_update=True)

            existing = await repo.count_approvals(period_id)
            if existing > 0 or period.status == BudgetStatus.PROPOSED:
                return existing
            if period.status != BudgetStatus.DRAFT:
                raise InvalidStateTransition(period_id, period.status.value, "send for approval")

            units = await repo.list_units(period.building_id)
            tokens = {unit.id: self._token_factory() for unit in units}
            await repo.insert_approvals(period_id, tokens)
            period = await repo.update_period(
                period_id, status=BudgetStatus.PROPOSED.value, sent_for_approval_at=now
            )

            contributions = {c.unit_id: c.amount for c in await repo.list_contributions(period_id)}
            fallback = average_share(await repo.list_lines(period_id), len(units))
            shares = {unit.id: contributions.get(unit.id, fallback) for unit in units}
            recipients = await repo.list_unit_recipients(list(tokens))

            await repo.record_audit(
                actor_id, "send_for_approval", "budget_period", period_id, {"unit_count": len(units)}
            )
            return _Dispatch(period=period, units=units, tokens=tokens, shares=shares, recipients=recipients)

        issued = await self._database.with_tenant(slug, _issue)
        if isinstance(issued, int):
            logger.info("budget_approval_already_sent", tenant=slug, period_id=period_id)
            return SendForApprovalResult(
                outcome=SendOutcome.ALREADY_DONE, period_id=period_id, unit_count=issued
            )

        sent = await self._dispatch(slug, issued)
        logger.info(
            "budget_sent_for_approval",
            tenant=slug,
            period_id=period_id,
            unit_count=len(issued.units),
            notices_sent=sent,
        )
        return SendForApprovalResult(
            outcome=SendOutcome.SENT,
            period_id=period_id,
            unit_count=len(issued.units),
            notices_sent=sent,
        )

    async def _dispatch(self, slug: str, plan: _Dispatch) -> int:
        if self._notifier is None:
            return 0
        sent = 0
        for unit in plan.units:
            token = plan.tokens.get(unit.id)
            if token is None:
                continue
            for recipient in plan.recipients.get(unit.id, []):
                notice = ApprovalNotice(
                    email=recipient.email,
                    name=recipient.name,
                    unit_identifier=unit.identifier,
                    token=token,
                    tenant_slug=slug,
                    period_id=plan.period.id,
                    period_name=plan.period.name,
                    year=plan.period.year,
                    share_per_unit=plan.shares[unit.id],
                )
                try:
                    await self._notifier.send_approval_notice(notice)
                    sent += 1
                except Exception:
                    logger.warning(
                        "approval_notice_failed",
                        tenant=slug,
                        period_id=plan.period.id,
                        unit_id=unit.id,
                        user_id=recipient.user_id,
                        exc_info=True,
                    )
        return sent

    # ── Read ────────────────────────────────────────────────────────────────

    async def list_periods(self, slug: str, building_ids: list[int] | None = None) -> list[BudgetPeriodListItem]:
        """Periods newest year first, optionally limited to some buildings."""

        async def _list(session: AsyncSession) -> list[BudgetPeriodListItem]:
            return await self._repository_factory(session).list_periods(building_ids)

        return await self._database.with_tenant(slug, _list)

    async def get_period_detail(self, slug: str, period_id: int) -> BudgetPeriodDetail:
        async def _detail(session: AsyncSession) -> BudgetPeriodDetail:
            repo = self._repository_factory(session)
            period = await self._require_period(repo, period_id)
            building = await repo.get_building(period.building_id)
            lines = await repo.list_lines(period_id)
            contributions = await repo.list_contributions(period_id)
            missing = await repo.list_missing_payments(period_id)
            units = await repo.list_units(period.building_id)
            paid = await repo.total_paid_by_unit(period_id)
            approved = await repo.count_approved_units(period_id)
            documents = await repo.list_period_documents(period_id)
            return BudgetPeriodDetail(
                period=period,
                building_name=building.name if building is not None else "",
                lines=lines,
                contributions=contributions,
                missing_payments=missing,
                units=unit_statuses(units, contributions, paid, missing),
                total=lines_total(lines),
                approval_stats=ApprovalStats(
                    approved_unit_count=approved,
                    required_approval_count=required_approval_count(len(units)),
                    unit_count=len(units),
                ),
                documents=documents,
            )

        return await self._database.with_tenant(slug, _detail)

    async def member_building_ids(self, slug: str, user_id: int) -> list[int]:
        """Buildings where the user is a unit member (resident visibility)."""

        async def _ids(session: AsyncSession) -> list[int]:
            return await self._repository_factory(session).list_member_building_ids(user_id)

        return await self._database.with_tenant(slug, _ids)

    # ── Update & Close & Delete ─────────────────────────────────────────────

    async def update_period(
        self, slug: str, period_id: int, changes: BudgetPeriodUpdate, actor_id: int
    ) -> BudgetPeriodRead:
        values = changes.model_dump(exclude_unset=True, exclude_none=True)
        if "opening_balance" in values:
            values["opening_balance"] = quantize_money(values["opening_balance"])

        async def _update(session: AsyncSession) -> BudgetPeriodRead:
            repo = self._repository_factory(session)
            period = await self._require_period(repo, period_id, for_update=True)
            if not values:
                return period
            updated = await repo.update_period(period_id, **values)
            await repo.record_audit(
                actor_id, "update", "budget_period", period_id, {"fields": sorted(values)}
            )
            return updated

        return await self._database.with_tenant(slug, _update)

    async def close_period(self, slug: str, period_id: int, actor_id: int) -> BudgetPeriodRead:
        """approved -> closed. Any other status raises InvalidStateTransition."""

        async def _close(session: AsyncSession) -> BudgetPeriodRead:
            repo = self._repository_factory(session)
            period = await self._require_period(repo, period_id, for_update=True)
            if period.status != BudgetStatus.APPROVED:
                raise InvalidStateTransition(period_id, period.status.value, "close")
            closed = await repo.update_period(period_id, status=BudgetStatus.CLOSED.value)
            await repo.record_audit(actor_id, "close", "budget_period", period_id)
            return closed

        period = await self._database.with_tenant(slug, _close)
        logger.info("budget_period_closed", tenant=slug, period_id=period_id)
        return period

    async def delete_period(self, slug: str, period_id: int, actor_id: int) -> None:
        async def _delete(session: AsyncSession) -> None:
            repo = self._repository_factory(session)
            await self._require_period(repo, period_id, for_update=True)
            await repo.delete_period(period_id)
            await repo.record_audit(actor_id, "delete", "budget_period", period_id)

        await self._database.with_tenant(slug, _delete)
        logger.info("budget_period_deleted", tenant=slug, period_id=period_id)

    # ── Lines ───────────────────────────────────────────────────────────────

    async def add_line(self, slug: str, period_id: int, line: BudgetLineCreate, actor_id: int) -> BudgetLineRead:
        async def _add(session: AsyncSession) -> BudgetLineRead:
            repo = self._repository_factory(session)
            await self._require_period(repo, period_id)
            sort_order = line.sort_order
            if sort_order is None:
                sort_order = await repo.next_line_sort_order(period_id)
            created = await repo.insert_line(
                period_id,
                line.category.value,
                line.description,
                quantize_money(line.amount),
                sort_order,
            )
            await repo.record_audit(
                actor_id, "create", "budget_line", created.id, {"budget_period_id": period_id}
            )
            return created

        return await self._database.with_tenant(slug, _add)

    async def update_line(
        self, slug: str, period_id: int, line_id: int, changes: BudgetLineUpdate, actor_id: int
    ) -> BudgetLineRead:
        values = changes.model_dump(exclude_unset=True, exclude_none=True)
        if "amount" in values:
            values["amount"] = quantize_money(values["amount"])
        if "category" in values:
            values["category"] = BudgetLineCategory(values["category"]).value

        async def _update(session: AsyncSession) -> BudgetLineRead:
            repo = self._repository_factory(session)
            await self._require_period(repo, period_id)
            updated = await repo.update_line(period_id, line_id, **values)
            if updated is None:
                raise BudgetLineNotFound(line_id)
            await repo.record_audit(
                actor_id, "update", "budget_line", line_id, {"budget_period_id": period_id}
            )
            return updated

        return await self._database.with_tenant(slug, _update)

    async def delete_line(self, slug: str, period_id: int, line_id: int, actor_id: int) -> None:
        async def _delete(session: AsyncSession) -> None:
            repo = self._repository_factory(session)
            if not await repo.delete_line(period_id, line_id):
                raise BudgetLineNotFound(line_id)
            await repo.record_audit(
                actor_id, "delete", "budget_line", line_id, {"budget_period_id": period_id}
            )

        await self._database.with_tenant(slug, _delete)

    # ── Contributions ───────────────────────────────────────────────────────

    async def set_unit_contribution(
        self, slug: str, period_id: int, unit_id: int, amount: Decimal, actor_id: int
    ) -> ContributionRead:
        """Override one unit's contribution for the period."""
        amount = quantize_money(amount)

        async def _set(session: AsyncSession) -> ContributionRead:
            repo = self._repository_factory(session)
            period = await self._require_period(repo, period_id)
            unit = await repo.get_unit(unit_id)
            if unit is None or unit.building_id != period.building_id:
                raise UnitNotFound(unit_id)
            contribution = await repo.upsert_contribution(period_id, unit_id, amount)
            await repo.record_audit(
                actor_id,
                "set_contribution",
                "budget_period",
                period_id,
                {"unit_id": unit_id, "amount": str(amount)},
            )
            return contribution

        return await self._database.with_tenant(slug, _set)

    # ── Missing Payments ────────────────────────────────────────────────────

    async def list_missing_payments(self, slug: str, period_id: int) -> list[MissingPaymentRead]:
        async def _list(session: AsyncSession) -> list[MissingPaymentRead]:
            repo = self._repository_factory(session)
            await self._require_period(repo, period_id)
            return await repo.list_missing_payments(period_id)

        return await self._database.with_tenant(slug, _list)

    async def add_missing_payment(
        self, slug: str, period_id: int, payment: MissingPaymentCreate, actor_id: int
    ) -> MissingPaymentRead:
        """Record arrears for a unit of the period's building.

        Raises:
            BudgetPeriodNotFound: No such period.
            UnitNotFound: Unit unknown or in another building.
        """
        amount = quantize_money(payment.amount)

        async def _add(session: AsyncSession) -> MissingPaymentRead:
            repo = self._repository_factory(session)
            period = await self._require_period(repo, period_id)
            unit = await repo.get_unit(payment.unit_id)
            if unit is None or unit.building_id != period.building_id:
                raise UnitNotFound(payment.unit_id)
            created = await repo.insert_missing_payment(period_id, payment.unit_id, amount, payment.reason)
            await repo.record_audit(
                actor_id,
                "create",
                "budget_missing_payment",
                created.id,
                {"budget_period_id": period_id, "unit_id": payment.unit_id, "amount": str(amount)},
            )
            return created

        return await self._database.with_tenant(slug, _add)

    async def delete_missing_payment(self, slug: str, period_id: int, missing_payment_id: int, actor_id: int) -> None:
        async def _delete(session: AsyncSession) -> None:
            repo = self._repository_factory(session)
            if not await repo.delete_missing_payment(period_id, missing_payment_id):
                raise MissingPaymentNotFound(missing_payment_id)
            await repo.record_audit(
                actor_id, "delete", "budget_missing_payment", missing_payment_id, {"budget_period_id": period_id}
            )

        await self._database.with_tenant(slug, _delete)

    # ── Documents ───────────────────────────────────────────────────────────

    async def attach_document(self, slug: str, period_id: int, document_id: int, actor_id: int) -> DocumentRead:
        """Attach a document of the same building (or a building-agnostic one). Idempotent."""

        async def _attach(session: AsyncSession) -> DocumentRead:
            repo = self._repository_factory(session)
            period = await self._require_period(repo, period_id)
            document = await repo.get_document(document_id)
            if document is None:
                raise DocumentNotFound(document_id)
            if document.building_id is not None and document.building_id != period.building_id:
                raise DocumentBuildingMismatch(document_id)
            if not await repo.is_document_attached(period_id, document_id):
                await repo.attach_document(period_id, document_id)
                await repo.record_audit(
                    actor_id, "attach_document", "budget_period", period_id, {"document_id": document_id}
                )
            return document

        return await self._database.with_tenant(slug, _attach)

    async def detach_document(self, slug: str, period_id: int, document_id: int, actor_id: int) -> None:
        async def _detach(session: AsyncSession) -> None:
            repo = self._repository_factory(session)
            await self._require_period(repo, period_id)
            if not await repo.detach_document(period_id, document_id):
                raise DocumentNotFound(document_id)
            await repo.record_audit(
                actor_id, "detach_document", "budget_period", period_id, {"document_id": document_id}
            )

        await self._database.with_tenant(slug, _detach)
