"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.condoboard.api.v1 import budget, budget_approval, documents, fee_templates, health, tenants

router = APIRouter()

router.include_router(health.router)
router.include_router(tenants.router)
router.include_router(budget.router)
router.include_router(budget_approval.router)
router.include_router(documents.router)
router.include_router(fee_templates.router)
