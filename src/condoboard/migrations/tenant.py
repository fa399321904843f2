"""Ordered DDL batches for a tenant schema.

Statements use unqualified names: the runner executes them with the search
path bound to the tenant schema. Every statement is idempotent so a batch
can be re-applied by repair after a partial failure. Keep in step with
src.condoboard.models.tenant.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantMigration:
    tag: str
    statements: tuple[str, ...]


INITIAL = TenantMigration(
    tag="0000_initial_tenant",
    statements=(
        """
        CREATE TABLE IF NOT EXISTS buildings (
            id SERIAL PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            address TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS units (
            id SERIAL PRIMARY KEY,
            building_id INTEGER NOT NULL REFERENCES buildings(id) ON DELETE CASCADE,
            identifier VARCHAR(64) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS unit_members (
            id SERIAL PRIMARY KEY,
            unit_id INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
            user_id INTEGER NOT NULL,
            role VARCHAR(16) NOT NULL CHECK (role IN ('owner', 'tenant', 'resident')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS documents (
            id SERIAL PRIMARY KEY,
            title VARCHAR(255) NOT NULL,
            file_key VARCHAR(512) NOT NULL,
            filename VARCHAR(255) NOT NULL,
            building_id INTEGER REFERENCES buildings(id) ON DELETE SET NULL,
            uploaded_by INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS audit_log (
            id SERIAL PRIMARY KEY,
            actor_id INTEGER NOT NULL,
            action VARCHAR(64) NOT NULL,
            entity_type VARCHAR(64) NOT NULL,
            entity_id VARCHAR(64),
            details JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_units_building ON units(building_id)",
        "CREATE INDEX IF NOT EXISTS idx_unit_members_unit ON unit_members(unit_id)",
    ),
)

FINANCIALS = TenantMigration(
    tag="0001_financial_budget_fees",
    statements=(
        """
        CREATE TABLE IF NOT EXISTS building_financials (
            building_id INTEGER PRIMARY KEY REFERENCES buildings(id) ON DELETE CASCADE,
            current_balance NUMERIC(12, 2) NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS budget_periods (
            id SERIAL PRIMARY KEY,
            building_id INTEGER NOT NULL REFERENCES buildings(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            year INTEGER NOT NULL,
            opening_balance NUMERIC(12, 2) NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'draft'
                CHECK (status IN ('draft', 'proposed', 'approved', 'closed')),
            start_date DATE,
            end_date DATE,
            created_by INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            sent_for_approval_at TIMESTAMPTZ,
            approved_at TIMESTAMPTZ
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS financial_transactions (
            id SERIAL PRIMARY KEY,
            building_id INTEGER NOT NULL REFERENCES buildings(id) ON DELETE CASCADE,
            amount NUMERIC(12, 2) NOT NULL,
            unit_id INTEGER REFERENCES units(id) ON DELETE SET NULL,
            budget_period_id INTEGER REFERENCES budget_periods(id) ON DELETE SET NULL,
            description VARCHAR(512),
            created_by INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS budget_lines (
            id SERIAL PRIMARY KEY,
            budget_period_id INTEGER NOT NULL REFERENCES budget_periods(id) ON DELETE CASCADE,
            category VARCHAR(16) NOT NULL CHECK (category IN ('one_time', 'recurring', 'extras')),
            description VARCHAR(512) NOT NULL,
            amount NUMERIC(12, 2) NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS budget_unit_contributions (
            id SERIAL PRIMARY KEY,
            budget_period_id INTEGER NOT NULL REFERENCES budget_periods(id) ON DELETE CASCADE,
            unit_id INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
            amount NUMERIC(12, 2) NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS fee_templates (
            id SERIAL PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            amount NUMERIC(12, 2) NOT NULL,
            frequency VARCHAR(16) NOT NULL CHECK (frequency IN ('monthly', 'yearly')),
            building_id INTEGER REFERENCES buildings(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS unit_fees (
            id SERIAL PRIMARY KEY,
            unit_id INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
            fee_template_id INTEGER REFERENCES fee_templates(id) ON DELETE SET NULL,
            amount NUMERIC(12, 2) NOT NULL,
            frequency VARCHAR(16) NOT NULL CHECK (frequency IN ('monthly', 'yearly')),
            effective_from DATE NOT NULL,
            effective_until DATE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_budget_periods_building_year ON budget_periods(building_id, year)",
        "CREATE INDEX IF NOT EXISTS idx_budget_lines_period ON budget_lines(budget_period_id)",
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_budget_unit_contributions_period_unit
            ON budget_unit_contributions(budget_period_id, unit_id)
        """,
    ),
)

APPROVALS = TenantMigration(
    tag="0002_budget_approvals_documents",
    statements=(
        """
        CREATE TABLE IF NOT EXISTS budget_approvals (
            id SERIAL PRIMARY KEY,
            budget_period_id INTEGER NOT NULL REFERENCES budget_periods(id) ON DELETE CASCADE,
            unit_id INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
            token VARCHAR(64) NOT NULL UNIQUE,
            approved_at TIMESTAMPTZ,
            rejected_at TIMESTAMPTZ,
            rejection_reason TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_budget_approvals_period_unit
            ON budget_approvals(budget_period_id, unit_id)
        """,
        """
        CREATE TABLE IF NOT EXISTS budget_period_documents (
            id SERIAL PRIMARY KEY,
            budget_period_id INTEGER NOT NULL REFERENCES budget_periods(id) ON DELETE CASCADE,
            document_id INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
    ),
)

MISSING_PAYMENTS = TenantMigration(
    tag="0003_budget_missing_payments",
    statements=(
        """
        CREATE TABLE IF NOT EXISTS budget_missing_payments (
            id SERIAL PRIMARY KEY,
            budget_period_id INTEGER NOT NULL REFERENCES budget_periods(id) ON DELETE CASCADE,
            unit_id INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
            amount NUMERIC(12, 2) NOT NULL,
            reason VARCHAR(512),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_budget_missing_payments_period ON budget_missing_payments(budget_period_id)",
    ),
)

TENANT_MIGRATIONS: tuple[TenantMigration, ...] = (INITIAL, FINANCIALS, APPROVALS, MISSING_PAYMENTS)
