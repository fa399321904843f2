"""Fee templates and the fees charged to individual units.

A template is a named recurring charge, bound to one building or to every
building when building_id is NULL. create_budget_period() reads templates to
derive the yearly contribution per unit. Unit fees record what a unit is
actually charged over a date range, optionally pointing at the template they
came from.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.condoboard.budget.calculations import quantize_money
from src.condoboard.budget.repository import BudgetRepository
from src.condoboard.budget.schemas import (
    FeeTemplateCreate,
    FeeTemplateRead,
    FeeTemplateUpdate,
    UnitFeeCreate,
    UnitFeeRead,
    UnitFeeUpdate,
)
from src.condoboard.budget.service import RepositoryFactory
from src.condoboard.core.database import Database
from src.condoboard.core.errors import BuildingNotFound, FeeTemplateNotFound, UnitFeeNotFound, UnitNotFound

logger = structlog.get_logger(__name__)

# Columns a partial update may set to NULL explicitly.
_TEMPLATE_NULLABLE = {"building_id"}
_UNIT_FEE_NULLABLE = {"effective_until", "fee_template_id"}


def _changes(payload: FeeTemplateUpdate | UnitFeeUpdate, nullable: set[str]) -> dict[str, Any]:
    values = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in nullable
    }
    if values.get("amount") is not None:
        values["amount"] = quantize_money(values["amount"])
    if values.get("frequency") is not None:
        values["frequency"] = values["frequency"].value
    return values


class FeeService:
    def __init__(self, database: Database, repository_factory: RepositoryFactory = BudgetRepository) -> None:
        self._database = database
        self._repository_factory = repository_factory

    @staticmethod
    async def _require_template(repo: BudgetRepository, template_id: int) -> FeeTemplateRead:
        template = await repo.get_fee_template(template_id)
        if template is None:
            raise FeeTemplateNotFound(template_id)
        return template

    @staticmethod
    async def _check_building(repo: BudgetRepository, building_id: int | None) -> None:
        if building_id is not None and await repo.get_building(building_id) is None:
            raise BuildingNotFound(building_id)

    # ── Templates ───────────────────────────────────────────────────────────

    async def list_templates(self, slug: str, building_id: int | None = None) -> list[FeeTemplateRead]:
        async def _list(session: AsyncSession) -> list[FeeTemplateRead]:
            return await self._repository_factory(session).list_all_fee_templates(building_id)

        return await self._database.with_tenant(slug, _list)

    async def get_template(self, slug: str, template_id: int) -> FeeTemplateRead:
        async def _get(session: AsyncSession) -> FeeTemplateRead:
            return await self._require_template(self._repository_factory(session), template_id)

        return await self._database.with_tenant(slug, _get)

    async def create_template(self, slug: str, template: FeeTemplateCreate, actor_id: int) -> FeeTemplateRead:
        """Create a template.

        Raises:
            BuildingNotFound: building_id given but unknown in this tenant.
        """

        async def _create(session: AsyncSession) -> FeeTemplateRead:
            repo = self._repository_factory(session)
            await self._check_building(repo, template.building_id)
            created = await repo.insert_fee_template(
                name=template.name,
                amount=quantize_money(template.amount),
                frequency=template.frequency.value,
                building_id=template.building_id,
            )
            await repo.record_audit(actor_id, "create", "fee_template", created.id, {"name": created.name})
            return created

        created = await self._database.with_tenant(slug, _create)
        logger.info("fee_template_created", tenant=slug, template_id=created.id, building_id=created.building_id)
        return created

    async def update_template(
        self, slug: str, template_id: int, changes: FeeTemplateUpdate, actor_id: int
    ) -> FeeTemplateRead:
        values = _changes(changes, _TEMPLATE_NULLABLE)

        async def _update(session: AsyncSession) -> FeeTemplateRead:
            repo = self._repository_factory(session)
            template = await self._require_template(repo, template_id)
            if not values:
                return template
            await self._check_building(repo, values.get("building_id"))
            updated = await repo.update_fee_template(template_id, **values)
            await repo.record_audit(actor_id, "update", "fee_template", template_id, {"fields": sorted(values)})
            return updated

        return await self._database.with_tenant(slug, _update)

    async def delete_template(self, slug: str, template_id: int, actor_id: int) -> None:
        """Delete a template. Unit fees created from it keep their amounts and lose the link."""

        async def _delete(session: AsyncSession) -> None:
            repo = self._repository_factory(session)
            if not await repo.delete_fee_template(template_id):
                raise FeeTemplateNotFound(template_id)
            await repo.record_audit(actor_id, "delete", "fee_template", template_id)

        await self._database.with_tenant(slug, _delete)
        logger.info("fee_template_deleted", tenant=slug, template_id=template_id)

    # ── Unit Fees ───────────────────────────────────────────────────────────

    async def list_unit_fees(
        self, slug: str, unit_id: int | None = None, building_id: int | None = None
    ) -> list[UnitFeeRead]:
        """unit_id wins over building_id when both are given."""

        async def _list(session: AsyncSession) -> list[UnitFeeRead]:
            return await self._repository_factory(session).list_unit_fees(unit_id, building_id)

        return await self._database.with_tenant(slug, _list)

    async def create_unit_fee(self, slug: str, fee: UnitFeeCreate, actor_id: int) -> UnitFeeRead:
        """Charge a unit.

        Raises:
            UnitNotFound: No such unit.
            FeeTemplateNotFound: fee_template_id given but unknown.
        """

        async def _create(session: AsyncSession) -> UnitFeeRead:
            repo = self._repository_factory(session)
            if await repo.get_unit(fee.unit_id) is None:
                raise UnitNotFound(fee.unit_id)
            if fee.fee_template_id is not None:
                await self._require_template(repo, fee.fee_template_id)
            created = await repo.insert_unit_fee(
                unit_id=fee.unit_id,
                amount=quantize_money(fee.amount),
                frequency=fee.frequency.value,
                effective_from=fee.effective_from,
                effective_until=fee.effective_until,
                fee_template_id=fee.fee_template_id,
            )
            await repo.record_audit(actor_id, "create", "unit_fee", created.id, {"unit_id": fee.unit_id})
            return created

        return await self._database.with_tenant(slug, _create)

    async def update_unit_fee(self, slug: str, unit_fee_id: int, changes: UnitFeeUpdate, actor_id: int) -> UnitFeeRead:
        values = _changes(changes, _UNIT_FEE_NULLABLE)

        async def _update(session: AsyncSession) -> UnitFeeRead:
            repo = self._repository_factory(session)
            current = await repo.get_unit_fee(unit_fee_id)
            if current is None:
                raise UnitFeeNotFound(unit_fee_id)
            if not values:
                return current
            if values.get("fee_template_id") is not None:
                await self._require_template(repo, values["fee_template_id"])
            updated = await repo.update_unit_fee(unit_fee_id, **values)
            await repo.record_audit(actor_id, "update", "unit_fee", unit_fee_id, {"fields": sorted(values)})
            return updated

        return await self._database.with_tenant(slug, _update)

    async def delete_unit_fee(self, slug: str, unit_fee_id: int, actor_id: int) -> None:
        async def _delete(session: AsyncSession) -> None:
            repo = self._repository_factory(session)
            if not await repo.delete_unit_fee(unit_fee_id):
                raise UnitFeeNotFound(unit_fee_id)
            await repo.record_audit(actor_id, "delete", "unit_fee", unit_fee_id)

        await self._database.with_tenant(slug, _delete)
