"""Pytest configuration and shared fixtures for recurbook tests."""

import asyncio
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

import pytest
import yaml

from recurbook import constants
from recurbook.cache import CacheCoordinator, DataCache
from recurbook.gateway import LedgerStore, RuleStoreGateway
from recurbook.locks import ProcessingGuard
from recurbook.processor import RecurringProcessor
from recurbook.schema import RecurringRule, Settings
from recurbook.service import RecurringService
from recurbook.transport import TransportError
from recurbook.types import Frequency, Kind, Operation, QueryAction

# Sunday 2026-02-01, 09:00 local
FIXED_NOW = datetime(2026, 2, 1, 9, 0)
TODAY = FIXED_NOW.date()

# ============================================================================
# Model Builders
# ============================================================================


def make_rule(
    rule_id: str = "rent",
    payee: str = "Landlord",
    amount: Decimal = Decimal("900.00"),
    kind: Kind = Kind.EXPENSE,
    frequency: Frequency = Frequency.MONTHLY,
    start_date: date = date(2026, 1, 1),
    end_date: Optional[date] = None,
    next_due: Optional[date] = TODAY,
    last_processed: Optional[datetime] = None,
    **kwargs,
) -> RecurringRule:
    """Create a RecurringRule with sensible defaults, due today."""
    return RecurringRule(
        id=rule_id,
        payee=payee,
        amount=amount,
        kind=kind,
        frequency=frequency,
        start_date=start_date,
        end_date=end_date,
        next_due=next_due,
        last_processed=last_processed,
        category=kwargs.get("category", "Housing"),
        account=kwargs.get("account", "Checking"),
        notes=kwargs.get("notes", ""),
    )


def make_settings(**kwargs) -> Settings:
    """Settings without artificial delays, so tests run instantly."""
    values = {"advance_delay": 0.0, "refresh_delay": 0.0}
    values.update(kwargs)
    return Settings(**values)


# ============================================================================
# In-memory Backend
# ============================================================================


class FakeBackend:
    """
    In-memory query and command transport.

    Records every payload it is sent. Failures can be injected per
    operation (``fail_operations``) or for all queries (``fail_queries``).
    Both methods yield to the event loop, like a real network call.
    """

    def __init__(self, rules: Optional[list[RecurringRule]] = None):
        self.rules: list[dict[str, Any]] = [r.to_wire() for r in rules or []]
        self.rows: list[dict[str, Any]] = []
        self.sent: list[dict[str, Any]] = []
        self.queries: list[QueryAction] = []
        self.fail_operations: set[Operation] = set()
        self.fail_queries = False

    async def query(self, action: QueryAction) -> dict[str, Any]:
        await asyncio.sleep(0)
        self.queries.append(action)
        if self.fail_queries:
            raise TransportError("backend unreachable")
        if action == QueryAction.GET_RECURRING:
            return {constants.DATASET_RECURRING: [dict(r) for r in self.rules]}
        return {constants.DATASET_TRANSACTIONS: [dict(r) for r in self.rows]}

    async def send(self, payload: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        operation = Operation(payload["operation"])
        if operation in self.fail_operations:
            raise TransportError(f"{operation.value} rejected")
        self.sent.append(payload)

        fields = {k: v for k, v in payload.items() if k != "operation"}
        if operation == Operation.ADD:
            self.rows.append(fields)
        elif operation == Operation.ADD_RECURRING:
            self.rules.append({"id": fields.pop("recurringId"), **fields})
        elif operation == Operation.UPDATE_RECURRING:
            rule_id = fields.pop("recurringId")
            for rule in self.rules:
                if rule["id"] == rule_id:
                    rule.update(fields)
        elif operation == Operation.DELETE_RECURRING:
            self.rules = [r for r in self.rules if r["id"] != fields["recurringId"]]

    def sent_operations(self, operation: Operation) -> list[dict[str, Any]]:
        return [p for p in self.sent if p["operation"] == operation.value]

    def rule(self, rule_id: str) -> dict[str, Any]:
        return next(r for r in self.rules if r["id"] == rule_id)


class Harness:
    """Gateways, cache and guard wired around one FakeBackend."""

    def __init__(self, backend: FakeBackend, settings: Optional[Settings] = None):
        self.backend = backend
        self.settings = settings or make_settings()
        self.cache = DataCache(ttl=self.settings.cache_ttl)
        self.coordinator = CacheCoordinator(self.cache)
        self.guard = ProcessingGuard()
        self.rules = RuleStoreGateway(backend, backend, self.cache, self.settings)
        self.ledger = LedgerStore(backend, backend, self.cache, self.settings)

    def processor(self, now: datetime = FIXED_NOW, **kwargs) -> RecurringProcessor:
        return RecurringProcessor(
            self.rules,
            self.ledger,
            self.coordinator,
            guard=self.guard,
            settings=self.settings,
            clock=lambda: now,
            **kwargs,
        )

    def service(self, now: datetime = FIXED_NOW) -> RecurringService:
        return RecurringService(self.rules, self.ledger, self.coordinator, clock=lambda: now)


# ============================================================================
# Pytest Fixtures
# ============================================================================


@pytest.fixture
def sample_rule():
    """Factory fixture for recurring rules."""
    return make_rule


@pytest.fixture
def backend():
    """Empty in-memory backend."""
    return FakeBackend()


@pytest.fixture
def harness(backend):
    """Wired gateways around the ``backend`` fixture."""
    return Harness(backend)


@pytest.fixture
def workbook_file(tmp_path):
    """A workbook file with one due rule, one future rule and one ledger row."""
    workbook = tmp_path / "recurbook.yaml"
    workbook.write_text(
        yaml.safe_dump(
            {
                "config": {"advance_delay": 0, "refresh_delay": 0},
                "recurringTransactions": [
                    {
                        "id": "rent",
                        "payee": "Landlord",
                        "category": "Housing",
                        "account": "Checking",
                        "notes": "",
                        "amount": "900.00",
                        "type": "Expense",
                        "frequency": "monthly",
                        "startDate": "2026-01-01",
                        "endDate": "",
                        "nextDue": "2026-02-01",
                        "lastProcessed": "",
                    },
                    {
                        "id": "salary",
                        "payee": "Employer",
                        "category": "Salary",
                        "account": "Checking",
                        "notes": "",
                        "amount": "2500.00",
                        "type": "Income",
                        "frequency": "biweekly",
                        "startDate": "2026-01-09",
                        "endDate": "",
                        "nextDue": "2026-02-06",
                        "lastProcessed": "2026-01-23T08:00:00",
                    },
                ],
                "transactions": [
                    {
                        "date": "2026-01-15",
                        "dayOfWeek": "Thursday",
                        "type": "Expense",
                        "amount": "42.10",
                        "category": "Groceries",
                        "account": "Checking",
                        "payee": "Market",
                        "notes": "",
                    }
                ],
            },
            sort_keys=False,
        )
    )
    return workbook
