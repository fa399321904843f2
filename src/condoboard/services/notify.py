"""Approval notice delivery.

The budget service only depends on the Notifier protocol. LoggingNotifier is
the stub used until a mail provider is wired in: it builds the message that
would be sent and logs it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from urllib.parse import quote

import structlog

logger = structlog.get_logger(__name__)

_DOUBLE_BUDGET = re.compile(r"^Budget\s+Budget\s+", re.IGNORECASE)
_LEADING_BUDGET = re.compile(r"^Budget\s+", re.IGNORECASE)


@dataclass(frozen=True)
class ApprovalNotice:
    """One approval request for one unit member."""

    email: str
    name: str | None
    unit_identifier: str
    token: str
    tenant_slug: str
    period_id: int
    period_name: str
    year: int
    share_per_unit: Decimal


class Notifier(Protocol):
    async def send_approval_notice(self, notice: ApprovalNotice) -> None: ...


def approval_url(base_url: str, notice: ApprovalNotice) -> str:
    return (
        f"{base_url.rstrip('/')}/t/{notice.tenant_slug}/budget/{notice.period_id}"
        f"/approve?token={quote(notice.token, safe='')}"
    )


def approval_subject(period_name: str, year: int) -> str:
    """Subject line; "Budget Budget 2026" collapses to "Budget 2026"."""
    name = period_name.strip()
    if _DOUBLE_BUDGET.match(name):
        name = _LEADING_BUDGET.sub("", name, count=1)
    return f"{name} ({year}) – approval requested"


class LoggingNotifier:
    """Notifier that logs each notice instead of sending it."""

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url

    async def send_approval_notice(self, notice: ApprovalNotice) -> None:
        logger.info(
            "approval_notice_sent",
            to=notice.email,
            subject=approval_subject(notice.period_name, notice.year),
            approve_url=approval_url(self._base_url, notice),
            unit=notice.unit_identifier,
            share=str(notice.share_per_unit),
            tenant=notice.tenant_slug,
        )
