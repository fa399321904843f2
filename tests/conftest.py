"""Shared test doubles and fixtures.

Provides:
- FakeSession: records execute/commit/rollback/close calls, so the real
  Database class can be exercised without Postgres
- InMemoryBudgetStore / InMemoryBudgetRepository: dict-backed stand-in for
  BudgetRepository, shared across transactions like a real database
- RecordingNotifier: collects approval notices instead of sending them
- Services wired to the above
"""

from __future__ import annotations

import itertools
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

from src.condoboard.budget.approvals import ApprovalService
from src.condoboard.budget.calculations import ZERO
from src.condoboard.budget.documents import DocumentService
from src.condoboard.budget.fees import FeeService
from src.condoboard.budget.ledger import LedgerService
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
from src.condoboard.budget.service import BudgetService
from src.condoboard.core.database import Database
from src.condoboard.services.notify import ApprovalNotice

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ── Fake Session ────────────────────────────────────────────────────────────


class FakeSession:
    """AsyncSession stand-in that logs what the unit of work did."""

    def __init__(self, events: list[tuple[str, Any]], fail_rollback: bool = False) -> None:
        self.events = events
        self.fail_rollback = fail_rollback

    async def __aenter__(self) -> FakeSession:
        self.events.append(("open", None))
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.events.append(("close", None))

    async def execute(self, statement: Any, params: Any = None) -> None:
        self.events.append(("execute", str(statement)))

    async def commit(self) -> None:
        self.events.append(("commit", None))

    async def rollback(self) -> None:
        self.events.append(("rollback", None))
        if self.fail_rollback:
            raise ConnectionError("connection lost during rollback")


class FakeSessionFactory:
    def __init__(self, fail_rollback: bool = False) -> None:
        self.events: list[tuple[str, Any]] = []
        self.sessions = 0
        self.fail_rollback = fail_rollback

    def __call__(self) -> FakeSession:
        self.sessions += 1
        return FakeSession(self.events, fail_rollback=self.fail_rollback)

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]


# ── In-Memory Budget Repository ─────────────────────────────────────────────


class InMemoryBudgetStore:
    """Tables of one tenant, as plain dicts keyed by id."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.buildings: dict[int, dict] = {}
        self.units: dict[int, dict] = {}
        self.members: list[dict] = []
        self.users: dict[int, dict] = {}
        self.fee_templates: dict[int, dict] = {}
        self.unit_fees: dict[int, dict] = {}
        self.periods: dict[int, dict] = {}
        self.lines: dict[int, dict] = {}
        self.contributions: dict[int, dict] = {}
        self.missing_payments: dict[int, dict] = {}
        self.approvals: dict[int, dict] = {}
        self.documents: dict[int, dict] = {}
        self.period_documents: list[dict] = []
        self.transactions: dict[int, dict] = {}
        self.balances: dict[int, Decimal] = {}
        self.audit: list[dict] = []

    def next_id(self) -> int:
        return next(self._ids)

    # ── Seeding helpers ──

    def add_building(self, name: str = "Maple Court") -> int:
        building_id = self.next_id()
        self.buildings[building_id] = {"id": building_id, "name": name, "address": None}
        return building_id

    def add_unit(self, building_id: int, identifier: str) -> int:
        unit_id = self.next_id()
        self.units[unit_id] = {"id": unit_id, "building_id": building_id, "identifier": identifier}
        return unit_id

    def add_units(self, building_id: int, count: int) -> list[int]:
        return [self.add_unit(building_id, f"{i + 1:03d}") for i in range(count)]

    def add_member(self, unit_id: int, email: str, name: str | None = None) -> int:
        user_id = self.next_id()
        self.users[user_id] = {"id": user_id, "email": email, "name": name}
        self.members.append({"unit_id": unit_id, "user_id": user_id})
        return user_id

    def add_fee_template(self, amount: str, frequency: str, building_id: int | None = None) -> int:
        template_id = self.next_id()
        self.fee_templates[template_id] = {
            "id": template_id,
            "name": f"Fee {template_id}",
            "amount": Decimal(amount),
            "frequency": frequency,
            "building_id": building_id,
        }
        return template_id

    def add_document(self, building_id: int | None, filename: str = "budget.pdf") -> int:
        document_id = self.next_id()
        self.documents[document_id] = {
            "id": document_id,
            "title": filename.rsplit(".", 1)[0],
            "filename": filename,
            "file_key": f"documents/{document_id}/{filename}",
            "building_id": building_id,
        }
        return document_id

    def approval_for_unit(self, period_id: int, unit_id: int) -> dict:
        return next(
            a for a in self.approvals.values()
            if a["budget_period_id"] == period_id and a["unit_id"] == unit_id
        )


class InMemoryBudgetRepository:
    """In-memory BudgetRepository for testing without database."""

    def __init__(self, store: InMemoryBudgetStore) -> None:
        self._store = store

    # Buildings & units

    async def get_building(self, building_id: int) -> BuildingRead | None:
        row = self._store.buildings.get(building_id)
        return BuildingRead(**row) if row else None

    async def list_units(self, building_id: int) -> list[UnitRead]:
        return [
            UnitRead(**u) for u in sorted(self._store.units.values(), key=lambda u: u["id"])
            if u["building_id"] == building_id
        ]

    async def count_units(self, building_id: int) -> int:
        return len(await self.list_units(building_id))

    async def get_unit(self, unit_id: int) -> UnitRead | None:
        row = self._store.units.get(unit_id)
        return UnitRead(**row) if row else None

    async def list_fee_templates(self, building_id: int) -> list[FeeTemplateRead]:
        return [
            FeeTemplateRead(**t) for t in self._store.fee_templates.values()
            if t["building_id"] in (building_id, None)
        ]

    # Fees

    async def get_fee_template(self, template_id: int) -> FeeTemplateRead | None:
        row = self._store.fee_templates.get(template_id)
        return FeeTemplateRead(**row) if row else None

    async def list_all_fee_templates(self, building_id: int | None = None) -> list[FeeTemplateRead]:
        rows = sorted(self._store.fee_templates.values(), key=lambda t: t["id"], reverse=True)
        return [
            FeeTemplateRead(**t) for t in rows
            if building_id is None or t["building_id"] == building_id
        ]

    async def insert_fee_template(self, name, amount, frequency, building_id=None) -> FeeTemplateRead:
        template_id = self._store.next_id()
        self._store.fee_templates[template_id] = {
            "id": template_id,
            "name": name,
            "amount": amount,
            "frequency": frequency,
            "building_id": building_id,
        }
        return FeeTemplateRead(**self._store.fee_templates[template_id])

    async def update_fee_template(self, template_id: int, **values: Any) -> FeeTemplateRead | None:
        row = self._store.fee_templates.get(template_id)
        if row is None:
            return None
        row.update(values)
        return FeeTemplateRead(**row)

    async def delete_fee_template(self, template_id: int) -> bool:
        if self._store.fee_templates.pop(template_id, None) is None:
            return False
        for fee in self._store.unit_fees.values():
            if fee["fee_template_id"] == template_id:
                fee["fee_template_id"] = None
        return True

    async def get_unit_fee(self, unit_fee_id: int) -> UnitFeeRead | None:
        row = self._store.unit_fees.get(unit_fee_id)
        return UnitFeeRead(**row) if row else None

    async def list_unit_fees(self, unit_id=None, building_id=None) -> list[UnitFeeRead]:
        rows = list(self._store.unit_fees.values())
        if unit_id is not None:
            rows = [f for f in rows if f["unit_id"] == unit_id]
        elif building_id is not None:
            rows = [f for f in rows if self._store.units[f["unit_id"]]["building_id"] == building_id]
        if unit_id is None and building_id is None:
            rows.sort(key=lambda f: f["id"], reverse=True)
        else:
            rows.sort(key=lambda f: (f["effective_from"], f["id"]), reverse=True)
        return [UnitFeeRead(**f) for f in rows]

    async def insert_unit_fee(self, **values: Any) -> UnitFeeRead:
        unit_fee_id = self._store.next_id()
        self._store.unit_fees[unit_fee_id] = {"id": unit_fee_id, **values}
        return UnitFeeRead(**self._store.unit_fees[unit_fee_id])

    async def update_unit_fee(self, unit_fee_id: int, **values: Any) -> UnitFeeRead | None:
        row = self._store.unit_fees.get(unit_fee_id)
        if row is None:
            return None
        row.update(values)
        return UnitFeeRead(**row)

    async def delete_unit_fee(self, unit_fee_id: int) -> bool:
        return self._store.unit_fees.pop(unit_fee_id, None) is not None

    # Members

    async def list_unit_recipients(self, unit_ids) -> dict[int, list[Recipient]]:
        recipients: dict[int, list[Recipient]] = {}
        for member in self._store.members:
            if member["unit_id"] in unit_ids:
                user = self._store.users[member["user_id"]]
                recipients.setdefault(member["unit_id"], []).append(
                    Recipient(user_id=user["id"], email=user["email"], name=user["name"])
                )
        return recipients

    async def list_member_building_ids(self, user_id: int) -> list[int]:
        return sorted({
            self._store.units[m["unit_id"]]["building_id"]
            for m in self._store.members if m["user_id"] == user_id
        })

    # Periods

    async def insert_period(self, **values: Any) -> BudgetPeriodRead:
        period_id = self._store.next_id()
        self._store.periods[period_id] = {
            "id": period_id,
            "status": "draft",
            "created_at": FIXED_NOW,
            "sent_for_approval_at": None,
            "approved_at": None,
            **values,
        }
        return BudgetPeriodRead(**self._store.periods[period_id])

    async def get_period(self, period_id: int, for_update: bool = False) -> BudgetPeriodRead | None:
        row = self._store.periods.get(period_id)
        return BudgetPeriodRead(**row) if row else None

    async def find_previous_period(self, building_id: int, year: int) -> BudgetPeriodRead | None:
        earlier = [
            p for p in self._store.periods.values()
            if p["building_id"] == building_id and p["year"] < year
        ]
        if not earlier:
            return None
        return BudgetPeriodRead(**max(earlier, key=lambda p: (p["year"], p["id"])))

    async def list_periods(self, building_ids=None) -> list[BudgetPeriodListItem]:
        rows = [
            p for p in self._store.periods.values()
            if building_ids is None or p["building_id"] in building_ids
        ]
        rows.sort(key=lambda p: (p["year"], p["id"]), reverse=True)
        return [
            BudgetPeriodListItem(**p, building_name=self._store.buildings[p["building_id"]]["name"])
            for p in rows
        ]

    async def update_period(self, period_id: int, **values: Any) -> BudgetPeriodRead | None:
        row = self._store.periods.get(period_id)
        if row is None:
            return None
        row.update(values)
        return BudgetPeriodRead(**row)

    async def delete_period(self, period_id: int) -> bool:
        for tx in self._store.transactions.values():
            if tx["budget_period_id"] == period_id:
                tx["budget_period_id"] = None
        existed = self._store.periods.pop(period_id, None) is not None
        for table in (
            self._store.lines,
            self._store.contributions,
            self._store.missing_payments,
            self._store.approvals,
        ):
            for key in [k for k, v in table.items() if v["budget_period_id"] == period_id]:
                del table[key]
        self._store.period_documents = [
            d for d in self._store.period_documents if d["budget_period_id"] != period_id
        ]
        return existed

    # Lines

    async def insert_line(self, period_id, category, description, amount, sort_order) -> BudgetLineRead:
        line_id = self._store.next_id()
        self._store.lines[line_id] = {
            "id": line_id,
            "budget_period_id": period_id,
            "category": category,
            "description": description,
            "amount": amount,
            "sort_order": sort_order,
        }
        return BudgetLineRead(**self._store.lines[line_id])

    async def list_lines(self, period_id: int) -> list[BudgetLineRead]:
        rows = [line for line in self._store.lines.values() if line["budget_period_id"] == period_id]
        rows.sort(key=lambda line: (line["sort_order"], line["id"]))
        return [BudgetLineRead(**line) for line in rows]

    async def next_line_sort_order(self, period_id: int) -> int:
        orders = [
            line["sort_order"] for line in self._store.lines.values()
            if line["budget_period_id"] == period_id
        ]
        current = max(orders, default=None)
        return 0 if current is None or current < 0 else current + 1

    async def update_line(self, period_id: int, line_id: int, **values: Any) -> BudgetLineRead | None:
        row = self._store.lines.get(line_id)
        if row is None or row["budget_period_id"] != period_id:
            return None
        row.update(values)
        return BudgetLineRead(**row)

    async def delete_line(self, period_id: int, line_id: int) -> bool:
        row = self._store.lines.get(line_id)
        if row is None or row["budget_period_id"] != period_id:
            return False
        del self._store.lines[line_id]
        return True

    # Contributions

    async def insert_contributions(self, period_id, unit_ids, amount) -> int:
        for unit_id in unit_ids:
            contribution_id = self._store.next_id()
            self._store.contributions[contribution_id] = {
                "id": contribution_id,
                "budget_period_id": period_id,
                "unit_id": unit_id,
                "amount": amount,
            }
        return len(unit_ids)

    async def list_contributions(self, period_id: int) -> list[ContributionRead]:
        rows = [c for c in self._store.contributions.values() if c["budget_period_id"] == period_id]
        return [ContributionRead(**c) for c in sorted(rows, key=lambda c: c["unit_id"])]

    async def upsert_contribution(self, period_id, unit_id, amount) -> ContributionRead:
        for row in self._store.contributions.values():
            if row["budget_period_id"] == period_id and row["unit_id"] == unit_id:
                row["amount"] = amount
                return ContributionRead(**row)
        await self.insert_contributions(period_id, [unit_id], amount)
        return await self.upsert_contribution(period_id, unit_id, amount)

    # Missing payments

    async def insert_missing_payment(self, period_id, unit_id, amount, reason=None) -> MissingPaymentRead:
        missing_payment_id = self._store.next_id()
        self._store.missing_payments[missing_payment_id] = {
            "id": missing_payment_id,
            "budget_period_id": period_id,
            "unit_id": unit_id,
            "amount": amount,
            "reason": reason,
        }
        return MissingPaymentRead(**self._store.missing_payments[missing_payment_id])

    async def list_missing_payments(self, period_id: int) -> list[MissingPaymentRead]:
        return [
            MissingPaymentRead(**m) for m in sorted(self._store.missing_payments.values(), key=lambda m: m["id"])
            if m["budget_period_id"] == period_id
        ]

    async def delete_missing_payment(self, period_id: int, missing_payment_id: int) -> bool:
        row = self._store.missing_payments.get(missing_payment_id)
        if row is None or row["budget_period_id"] != period_id:
            return False
        del self._store.missing_payments[missing_payment_id]
        return True

    # Approvals

    async def count_approvals(self, period_id: int) -> int:
        return sum(1 for a in self._store.approvals.values() if a["budget_period_id"] == period_id)

    async def insert_approvals(self, period_id: int, tokens: dict[int, str]) -> None:
        for unit_id, token in tokens.items():
            approval_id = self._store.next_id()
            self._store.approvals[approval_id] = {
                "id": approval_id,
                "budget_period_id": period_id,
                "unit_id": unit_id,
                "token": token,
                "approved_at": None,
                "rejected_at": None,
                "rejection_reason": None,
            }

    async def get_approval(self, period_id: int, token: str) -> ApprovalRead | None:
        for row in self._store.approvals.values():
            if row["budget_period_id"] == period_id and row["token"] == token:
                return ApprovalRead(**row)
        return None

    async def mark_approved(self, approval_id: int, at: datetime) -> None:
        self._store.approvals[approval_id]["approved_at"] = at

    async def mark_rejected(self, approval_id: int, at: datetime, reason: str | None) -> None:
        self._store.approvals[approval_id].update(rejected_at=at, rejection_reason=reason)

    async def count_approved_units(self, period_id: int) -> int:
        return len({
            a["unit_id"] for a in self._store.approvals.values()
            if a["budget_period_id"] == period_id and a["approved_at"] is not None
        })

    # Documents

    async def get_document(self, document_id: int) -> DocumentRead | None:
        row = self._store.documents.get(document_id)
        return DocumentRead(**row) if row else None

    async def insert_document(self, title, file_key, filename, uploaded_by, building_id=None) -> DocumentRead:
        document_id = self._store.next_id()
        self._store.documents[document_id] = {
            "id": document_id,
            "title": title,
            "filename": filename,
            "file_key": file_key,
            "building_id": building_id,
        }
        return DocumentRead(**self._store.documents[document_id])

    async def list_documents(self, building_id=None, limit: int = 50, offset: int = 0) -> list[DocumentRead]:
        rows = [
            d for d in sorted(self._store.documents.values(), key=lambda d: d["id"], reverse=True)
            if building_id is None or d["building_id"] == building_id
        ]
        return [DocumentRead(**d) for d in rows[offset:offset + limit]]

    async def delete_document(self, document_id: int) -> bool:
        if self._store.documents.pop(document_id, None) is None:
            return False
        self._store.period_documents = [
            link for link in self._store.period_documents if link["document_id"] != document_id
        ]
        return True

    async def list_period_documents(self, period_id: int) -> list[DocumentRead]:
        return [
            DocumentRead(**self._store.documents[d["document_id"]])
            for d in self._store.period_documents if d["budget_period_id"] == period_id
        ]

    async def is_document_attached(self, period_id: int, document_id: int) -> bool:
        return {"budget_period_id": period_id, "document_id": document_id} in self._store.period_documents

    async def attach_document(self, period_id: int, document_id: int) -> None:
        self._store.period_documents.append({"budget_period_id": period_id, "document_id": document_id})

    async def detach_document(self, period_id: int, document_id: int) -> bool:
        link = {"budget_period_id": period_id, "document_id": document_id}
        if link not in self._store.period_documents:
            return False
        self._store.period_documents.remove(link)
        return True

    # Ledger

    async def get_or_create_balance(self, building_id: int) -> Decimal:
        return self._store.balances.setdefault(building_id, ZERO)

    async def get_balance(self, building_id: int) -> Decimal | None:
        return self._store.balances.get(building_id)

    async def add_to_balance(self, building_id: int, amount: Decimal) -> Decimal:
        self._store.balances[building_id] = self._store.balances.get(building_id, ZERO) + amount
        return self._store.balances[building_id]

    async def insert_transaction(self, **values: Any) -> TransactionRead:
        transaction_id = self._store.next_id()
        row = {"id": transaction_id, "created_at": FIXED_NOW, **values}
        self._store.transactions[transaction_id] = row
        return TransactionRead(**row)

    async def total_paid_by_unit(self, period_id: int) -> dict[int, Decimal]:
        totals: dict[int, Decimal] = {}
        for tx in self._store.transactions.values():
            if tx["budget_period_id"] == period_id and tx["unit_id"] is not None:
                totals[tx["unit_id"]] = totals.get(tx["unit_id"], ZERO) + tx["amount"]
        return totals

    # Audit

    async def record_audit(self, actor_id, action, entity_type, entity_id=None, details=None) -> None:
        self._store.audit.append({
            "actor_id": actor_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details,
        })


# ── Notifier ────────────────────────────────────────────────────────────────


class RecordingNotifier:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.notices: list[ApprovalNotice] = []
        self.fail_for = fail_for or set()

    async def send_approval_notice(self, notice: ApprovalNotice) -> None:
        if notice.email in self.fail_for:
            raise RuntimeError(f"mail provider rejected {notice.email}")
        self.notices.append(notice)


class InMemoryStorage:
    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        self.files[key] = data

    async def get(self, key: str) -> bytes | None:
        return self.files.get(key)

    async def delete(self, key: str) -> None:
        self.files.pop(key, None)


# ── Fixtures ────────────────────────────────────────────────────────────────


SLUG = "maple"
ACTOR_ID = 900


@pytest.fixture
def sessions() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def database(sessions: FakeSessionFactory) -> Database:
    return Database(sessions)


@pytest.fixture
def store() -> InMemoryBudgetStore:
    return InMemoryBudgetStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def budget_service(database, store, notifier) -> BudgetService:
    tokens = (f"{i:064x}" for i in itertools.count(1))
    return BudgetService(
        database,
        notifier=notifier,
        repository_factory=lambda session: InMemoryBudgetRepository(store),
        clock=lambda: FIXED_NOW,
        token_factory=lambda: next(tokens),
    )


@pytest.fixture
def approval_service(database, store, storage) -> ApprovalService:
    return ApprovalService(
        database,
        storage=storage,
        repository_factory=lambda session: InMemoryBudgetRepository(store),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def ledger_service(database, store) -> LedgerService:
    return LedgerService(database, repository_factory=lambda session: InMemoryBudgetRepository(store))


@pytest.fixture
def document_service(database, store, storage) -> DocumentService:
    return DocumentService(
        database,
        storage,
        repository_factory=lambda session: InMemoryBudgetRepository(store),
        max_bytes=1024,
    )


@pytest.fixture
def fee_service(database, store) -> FeeService:
    return FeeService(database, repository_factory=lambda session: InMemoryBudgetRepository(store))
