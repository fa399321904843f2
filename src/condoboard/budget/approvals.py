"""Token-based resident responses to a proposed budget.

Every unit receives one approval token when the period is sent for approval.
The token is the only credential: whoever holds it may approve or decline on
the unit's behalf, once. Approvals count towards a two-thirds quorum of the
building's units; reaching it moves the period to "approved". Declines are
recorded for management and never affect the quorum.

Each operation runs as one tenant transaction with the approval row locked,
so the quorum count always includes the write that triggered it.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.condoboard.budget.calculations import (
    ZERO,
    lines_total,
    normalize_reason,
    normalize_token,
    quantize_money,
    required_approval_count,
)
from src.condoboard.budget.repository import BudgetRepository
from src.condoboard.budget.schemas import (
    ApprovalInfo,
    ApprovalOutcome,
    ApprovalRead,
    ApprovalStats,
    PublicDocumentRead,
    ResponseOutcome,
)
from src.condoboard.budget.service import Clock, RepositoryFactory, unit_statuses, utcnow
from src.condoboard.core.database import Database
from src.condoboard.core.errors import (
    BudgetPeriodNotFound,
    ConflictingResponse,
    DocumentNotFound,
    TokenNotFound,
)
from src.condoboard.models.tenant import BudgetStatus
from src.condoboard.services.storage import StorageAdapter

logger = structlog.get_logger(__name__)

APPROVED_MESSAGE = "Approval recorded"
ALREADY_APPROVED_MESSAGE = "You have already approved this budget"
REJECTED_MESSAGE = "Decline recorded. Your reason has been shared with management."
ALREADY_REJECTED_MESSAGE = "You have already declined this budget"
APPROVE_AFTER_REJECT = (
    "You have already declined this budget. Contact management to change your response."
)
REJECT_AFTER_APPROVE = (
    "You have already approved this budget. Contact management to change your response."
)


class ApprovalService:
    """Approve, decline and inspect a budget period through a unit's token.

    Args:
        database: Shared Database handle.
        storage: Where attached documents are read from.
        repository_factory: Builds the repository from a session.
        clock: Source of "now" for response timestamps.
    """

    def __init__(
        self,
        database: Database,
        storage: StorageAdapter | None = None,
        repository_factory: RepositoryFactory = BudgetRepository,
        clock: Clock = utcnow,
    ) -> None:
        self._database = database
        self._storage = storage
        self._repository_factory = repository_factory
        self._clock = clock

    @staticmethod
    async def _require_approval(repo: BudgetRepository, period_id: int, token: str) -> ApprovalRead:
        approval = await repo.get_approval(period_id, token)
        if approval is None or approval.budget_period_id != period_id:
            raise TokenNotFound()
        return approval

    # ── Approve ─────────────────────────────────────────────────────────────

    async def approve_by_token(self, slug: str, period_id: int, token: str | None) -> ApprovalOutcome:
        """Record the unit's approval and promote the period once quorum is met.

        Raises:
            TokenNotFound: Blank, oversized or unknown token for this period.
            ConflictingResponse: The unit already declined.
        """
        token = normalize_token(token)
        if token is None:
            raise TokenNotFound()
        now = self._clock()

        async def _approve(session: AsyncSession) -> ApprovalOutcome:
            repo = self._repository_factory(session)
            approval = await self._require_approval(repo, period_id, token)
            if approval.approved_at is not None:
                return ApprovalOutcome(
                    outcome=ResponseOutcome.ALREADY_APPROVED, message=ALREADY_APPROVED_MESSAGE
                )
            if approval.rejected_at is not None:
                raise ConflictingResponse(APPROVE_AFTER_REJECT)

            await repo.mark_approved(approval.id, now)

            period = await repo.get_period(period_id, for_update=True)
            if period is None:
                raise BudgetPeriodNotFound(period_id)
            unit_count = await repo.count_units(period.building_id)
            approved = await repo.count_approved_units(period_id)
            required = required_approval_count(unit_count)
            reached = approved >= required

            status = period.status
            if reached and status not in (BudgetStatus.APPROVED, BudgetStatus.CLOSED):
                await repo.update_period(period_id, status=BudgetStatus.APPROVED.value, approved_at=now)
                status = BudgetStatus.APPROVED
                logger.info(
                    "budget_period_approved",
                    tenant=slug,
                    period_id=period_id,
                    approved_unit_count=approved,
                    unit_count=unit_count,
                )

            return ApprovalOutcome(
                outcome=ResponseOutcome.RECORDED,
                message=APPROVED_MESSAGE,
                stats=ApprovalStats(
                    approved_unit_count=approved,
                    required_approval_count=required,
                    unit_count=unit_count,
                ),
                quorum_reached=reached,
                period_status=status,
            )

        outcome = await self._database.with_tenant(slug, _approve)
        logger.info("budget_approval_response", tenant=slug, period_id=period_id, outcome=outcome.outcome.value)
        return outcome

    # ── Reject ──────────────────────────────────────────────────────────────

    async def reject_by_token(
        self, slug: str, period_id: int, token: str | None, reason: str | None = None
    ) -> ApprovalOutcome:
        """Record the unit's decline. Never changes the period status.

        Raises:
            TokenNotFound: Blank, oversized or unknown token for this period.
            ConflictingResponse: The unit already approved.
        """
        token = normalize_token(token)
        if token is None:
            raise TokenNotFound()
        reason = normalize_reason(reason)
        now = self._clock()

        async def _reject(session: AsyncSession) -> ApprovalOutcome:
            repo = self._repository_factory(session)
            approval = await self._require_approval(repo, period_id, token)
            if approval.rejected_at is not None:
                return ApprovalOutcome(
                    outcome=ResponseOutcome.ALREADY_REJECTED, message=ALREADY_REJECTED_MESSAGE
                )
            if approval.approved_at is not None:
                raise ConflictingResponse(REJECT_AFTER_APPROVE)
            await repo.mark_rejected(approval.id, now, reason)
            return ApprovalOutcome(outcome=ResponseOutcome.RECORDED, message=REJECTED_MESSAGE)

        outcome = await self._database.with_tenant(slug, _reject)
        logger.info(
            "budget_rejection_response",
            tenant=slug,
            period_id=period_id,
            outcome=outcome.outcome.value,
            has_reason=reason is not None,
        )
        return outcome

    # ── Approval Page ───────────────────────────────────────────────────────

    async def get_approval_info(self, slug: str, period_id: int, token: str | None) -> ApprovalInfo:
        """Everything the public approval page shows for one unit's link."""
        token = normalize_token(token)
        if token is None:
            raise TokenNotFound()

        async def _info(session: AsyncSession) -> ApprovalInfo:
            repo = self._repository_factory(session)
            approval = await self._require_approval(repo, period_id, token)
            period = await repo.get_period(period_id)
            if period is None:
                raise BudgetPeriodNotFound(period_id)
            building = await repo.get_building(period.building_id)
            lines = await repo.list_lines(period_id)
            contributions = await repo.list_contributions(period_id)
            units = await repo.list_units(period.building_id)
            paid = await repo.total_paid_by_unit(period_id)
            approved = await repo.count_approved_units(period_id)
            documents = [
                PublicDocumentRead.model_validate(d) for d in await repo.list_period_documents(period_id)
            ]

            share = next((c.amount for c in contributions if c.unit_id == approval.unit_id), ZERO)
            identifier = next((u.identifier for u in units if u.id == approval.unit_id), None)
            responded = approval.approved_at is not None or approval.rejected_at is not None
            return ApprovalInfo(
                period_id=period.id,
                name=period.name,
                year=period.year,
                status=period.status,
                building_name=building.name if building is not None else "",
                lines=lines,
                units=unit_statuses(units, contributions, paid),
                documents=documents,
                total=lines_total(lines),
                opening_balance=quantize_money(period.opening_balance),
                total_contributions=quantize_money(sum((c.amount for c in contributions), ZERO)),
                stats=ApprovalStats(
                    approved_unit_count=approved,
                    required_approval_count=required_approval_count(len(units)),
                    unit_count=len(units),
                ),
                unit_identifier=identifier,
                unit_share=quantize_money(share),
                can_respond=not responded,
                already_approved=approval.approved_at is not None,
                already_rejected=approval.rejected_at is not None,
                rejection_reason=approval.rejection_reason,
            )

        return await self._database.with_tenant(slug, _info)

    async def open_document(
        self, slug: str, period_id: int, token: str | None, document_id: int
    ) -> tuple[str, bytes]:
        """Filename and content of a document attached to the period.

        Raises:
            TokenNotFound: Token not valid for this period.
            DocumentNotFound: Not attached to the period, or missing from storage.
        """
        token = normalize_token(token)
        if token is None:
            raise TokenNotFound()

        async def _find(session: AsyncSession):
            repo = self._repository_factory(session)
            await self._require_approval(repo, period_id, token)
            if not await repo.is_document_attached(period_id, document_id):
                raise DocumentNotFound(document_id)
            document = await repo.get_document(document_id)
            if document is None:
                raise DocumentNotFound(document_id)
            return document

        document = await self._database.with_tenant(slug, _find)
        data = await self._storage.get(document.file_key) if self._storage is not None else None
        if data is None:
            logger.warning("document_missing_from_storage", tenant=slug, document_id=document_id)
            raise DocumentNotFound(document_id)
        return document.filename, data
