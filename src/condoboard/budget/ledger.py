"""Building ledger: append-only transactions plus a running balance.

Recording a transaction and moving the balance happen in the same tenant
transaction, so the balance always equals the sum of the recorded entries
(plus whatever it started from).
"""

from __future__ import annotations

from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.condoboard.budget.calculations import ZERO, quantize_money
from src.condoboard.budget.repository import BudgetRepository
from src.condoboard.budget.schemas import BalanceRead, TransactionCreate, TransactionRead
from src.condoboard.budget.service import RepositoryFactory
from src.condoboard.core.database import Database
from src.condoboard.core.errors import BudgetPeriodNotFound, BuildingNotFound, UnitNotFound

logger = structlog.get_logger(__name__)


class LedgerService:
    def __init__(self, database: Database, repository_factory: RepositoryFactory = BudgetRepository) -> None:
        self._database = database
        self._repository_factory = repository_factory

    async def record_transaction(
        self, slug: str, transaction: TransactionCreate, actor_id: int
    ) -> tuple[TransactionRead, Decimal]:
        """Insert a ledger entry and apply it to the building balance.

        Returns the entry and the new balance.
        """
        amount = quantize_money(transaction.amount)

        async def _record(session: AsyncSession) -> tuple[TransactionRead, Decimal]:
            repo = self._repository_factory(session)
            if await repo.get_building(transaction.building_id) is None:
                raise BuildingNotFound(transaction.building_id)
            if transaction.unit_id is not None:
                unit = await repo.get_unit(transaction.unit_id)
                if unit is None or unit.building_id != transaction.building_id:
                    raise UnitNotFound(transaction.unit_id)
            if transaction.budget_period_id is not None:
                period = await repo.get_period(transaction.budget_period_id)
                if period is None or period.building_id != transaction.building_id:
                    raise BudgetPeriodNotFound(transaction.budget_period_id)

            entry = await repo.insert_transaction(
                building_id=transaction.building_id,
                amount=amount,
                created_by=actor_id,
                unit_id=transaction.unit_id,
                budget_period_id=transaction.budget_period_id,
                description=transaction.description,
            )
            balance = await repo.add_to_balance(transaction.building_id, amount)
            await repo.record_audit(
                actor_id,
                "create",
                "financial_transaction",
                entry.id,
                {"building_id": transaction.building_id, "amount": str(amount)},
            )
            return entry, balance

        entry, balance = await self._database.with_tenant(slug, _record)
        logger.info(
            "ledger_transaction_recorded",
            tenant=slug,
            transaction_id=entry.id,
            building_id=entry.building_id,
            amount=str(amount),
            balance=str(balance),
        )
        return entry, balance

    async def get_balance(self, slug: str, building_id: int) -> BalanceRead:
        async def _balance(session: AsyncSession) -> BalanceRead:
            repo = self._repository_factory(session)
            if await repo.get_building(building_id) is None:
                raise BuildingNotFound(building_id)
            balance = await repo.get_balance(building_id)
            return BalanceRead(building_id=building_id, current_balance=balance if balance is not None else ZERO)

        return await self._database.with_tenant(slug, _balance)
