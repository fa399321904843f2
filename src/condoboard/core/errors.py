"""Error taxonomy raised by the tenant data-access core and the budget workflow.

Every error derives from CondoboardError so the HTTP boundary can translate
them in one place (see src.condoboard.api.errors). Database driver errors are
not wrapped; they propagate unchanged after the transaction is rolled back.
"""

from __future__ import annotations


class CondoboardError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ── Tenancy ─────────────────────────────────────────────────────────────────


class InvalidTenantIdentifier(CondoboardError):
    """Slug does not match the allow-list pattern."""

    def __init__(self, slug: object) -> None:
        super().__init__("Invalid tenant slug")
        self.slug = slug


class TenantAlreadyExists(CondoboardError):
    def __init__(self, slug: str) -> None:
        super().__init__(f"Tenant with slug '{slug}' already exists")
        self.slug = slug


class TenantNotFound(CondoboardError):
    def __init__(self, slug: str) -> None:
        super().__init__(f"Tenant not found: {slug}")
        self.slug = slug


class ProvisioningFailed(CondoboardError):
    """A provisioning step failed after the tenant row was committed.

    ``completed_stage`` names the last stage that did complete, so operators
    know where to resume with ``repair_tenant``.
    """

    def __init__(self, slug: str, completed_stage: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(
            f"Provisioning of tenant '{slug}' stopped after stage '{completed_stage}'{detail}"
        )
        self.slug = slug
        self.completed_stage = completed_stage
        self.cause = cause


# ── Budget ──────────────────────────────────────────────────────────────────


class InvalidStateTransition(CondoboardError):
    def __init__(self, entity_id: int, current: str, action: str) -> None:
        super().__init__(f"Cannot {action} budget period {entity_id} in status '{current}'")
        self.entity_id = entity_id
        self.current = current
        self.action = action


class BudgetPeriodNotFound(CondoboardError):
    def __init__(self, period_id: int) -> None:
        super().__init__(f"Budget period {period_id} not found")
        self.period_id = period_id


class BuildingNotFound(CondoboardError):
    def __init__(self, building_id: int) -> None:
        super().__init__(f"Building {building_id} not found")
        self.building_id = building_id


class UnitNotFound(CondoboardError):
    def __init__(self, unit_id: int) -> None:
        super().__init__(f"Unit {unit_id} not found in this building")
        self.unit_id = unit_id


class BudgetLineNotFound(CondoboardError):
    def __init__(self, line_id: int) -> None:
        super().__init__(f"Budget line {line_id} not found")
        self.line_id = line_id


class MissingPaymentNotFound(CondoboardError):
    def __init__(self, missing_payment_id: int) -> None:
        super().__init__(f"Missing payment {missing_payment_id} not found")
        self.missing_payment_id = missing_payment_id


class DocumentNotFound(CondoboardError):
    def __init__(self, document_id: int) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class DocumentBuildingMismatch(CondoboardError):
    def __init__(self, document_id: int) -> None:
        super().__init__("Document must belong to the same building as the budget")
        self.document_id = document_id


class DocumentTooLarge(CondoboardError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Document is {size} bytes; the limit is {limit}")
        self.size = size
        self.limit = limit


# ── Fees ────────────────────────────────────────────────────────────────────


class FeeTemplateNotFound(CondoboardError):
    def __init__(self, template_id: int) -> None:
        super().__init__(f"Fee template {template_id} not found")
        self.template_id = template_id


class UnitFeeNotFound(CondoboardError):
    def __init__(self, unit_fee_id: int) -> None:
        super().__init__(f"Unit fee {unit_fee_id} not found")
        self.unit_fee_id = unit_fee_id


# ── Approvals ───────────────────────────────────────────────────────────────


class TokenNotFound(CondoboardError):
    def __init__(self) -> None:
        super().__init__("Approval link not found or invalid")


class ConflictingResponse(CondoboardError):
    """The unit already gave the opposite, terminal answer."""


# ── Migrations ──────────────────────────────────────────────────────────────


class MigrationFailed(CondoboardError):
    """A tenant migration statement failed; the whole batch was rolled back."""

    def __init__(self, tag: str, statement_index: int, cause: BaseException) -> None:
        super().__init__(f"Tenant migration {tag} failed at statement {statement_index}: {cause}")
        self.tag = tag
        self.statement_index = statement_index
        self.cause = cause
