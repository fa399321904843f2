"""Pure budget arithmetic: contributions, quorum, carry-forward, tokens.

Nothing here touches the database, so the rules can be tested directly.
All money values are Decimal quantized to cents.
"""

from __future__ import annotations

import secrets
from collections.abc import Iterable, Sequence
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from src.condoboard.budget.schemas import BudgetLineRead, FeeTemplateRead
from src.condoboard.models.tenant import BudgetLineCategory, FeeFrequency

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

UNIT_CONTRIBUTIONS_DESCRIPTION = "Unit contributions"
UNIT_CONTRIBUTIONS_SORT_ORDER = -1

MAX_REJECTION_REASON = 2000
MAX_TOKEN_LENGTH = 128
TOKEN_BYTES = 32


def quantize_money(value: Decimal | int | float | str) -> Decimal:
    """Round to cents, half up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def period_dates(year: int) -> tuple[date, date]:
    """Budget periods cover the calendar year."""
    return date(year, 1, 1), date(year, 12, 31)


# ── Contributions ───────────────────────────────────────────────────────────


def yearly_amount(amount: Decimal, frequency: str) -> Decimal:
    if frequency == FeeFrequency.YEARLY.value:
        return amount
    return amount * 12


def yearly_contribution_per_unit(templates: Iterable[FeeTemplateRead]) -> Decimal:
    """Sum of applicable fee templates per unit per year.

    Yearly templates count as-is, monthly ones twelve times. No templates
    means a contribution of zero.
    """
    total = sum((yearly_amount(t.amount, t.frequency) for t in templates), ZERO)
    return quantize_money(total)


def contributions_line_amount(per_unit: Decimal, unit_count: int) -> Decimal:
    """Amount of the synthetic "Unit contributions" line."""
    return quantize_money(per_unit * unit_count)


def average_share(lines: Sequence[BudgetLineRead], unit_count: int) -> Decimal:
    """Flat share per unit: total of all lines divided evenly."""
    if unit_count <= 0:
        return ZERO
    return quantize_money(lines_total(lines) / unit_count)


def lines_total(lines: Iterable[BudgetLineRead]) -> Decimal:
    return quantize_money(sum((line.amount for line in lines), ZERO))


def is_contributions_line(line: BudgetLineRead) -> bool:
    return line.description == UNIT_CONTRIBUTIONS_DESCRIPTION


def carry_forward(previous_lines: Iterable[BudgetLineRead]) -> list[tuple[str, Decimal, int]]:
    """Recurring lines to copy into the next year's budget.

    Returns (description, amount, sort_order) tuples. The synthetic
    contributions line is skipped; the new period computes its own.
    """
    copied: list[tuple[str, Decimal, int]] = []
    for line in previous_lines:
        if line.category != BudgetLineCategory.RECURRING.value or is_contributions_line(line):
            continue
        copied.append((line.description, line.amount, len(copied)))
    return copied


# ── Quorum ──────────────────────────────────────────────────────────────────


def required_approval_count(unit_count: int) -> int:
    """ceil(2/3 * unit_count), computed in integers: 10 -> 7, 3 -> 2, 1 -> 1."""
    if unit_count <= 0:
        return 0
    return (2 * unit_count + 2) // 3


def quorum_reached(approved_unit_count: int, unit_count: int) -> bool:
    return approved_unit_count >= required_approval_count(unit_count)


# ── Tokens & input normalization ────────────────────────────────────────────


def generate_approval_token() -> str:
    """64 hex chars from the OS CSPRNG."""
    return secrets.token_hex(TOKEN_BYTES)


def normalize_token(token: str | None) -> str | None:
    """Stripped token, or None when it cannot possibly be valid."""
    if not isinstance(token, str):
        return None
    token = token.strip()
    if not token or len(token) > MAX_TOKEN_LENGTH:
        return None
    return token


def normalize_reason(reason: str | None) -> str | None:
    if not isinstance(reason, str):
        return None
    reason = reason.strip()[:MAX_REJECTION_REASON]
    return reason or None
