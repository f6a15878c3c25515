"""Wiring helpers shared by CLI commands."""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import click

from recurbook.backends import WorkbookBackend
from recurbook.cache import CacheCoordinator, DataCache
from recurbook.gateway import LedgerStore, RuleStoreGateway
from recurbook.loader import find_workbook, load_settings
from recurbook.locks import ProcessingGuard
from recurbook.processor import RecurringProcessor, RefreshHook
from recurbook.schema import Settings
from recurbook.service import RecurringService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a command needs to talk to one workbook."""

    workbook: Path
    settings: Settings
    cache: DataCache
    rules: RuleStoreGateway
    ledger: LedgerStore
    coordinator: CacheCoordinator
    guard: ProcessingGuard = field(default_factory=ProcessingGuard)

    def processor(self, refresh_hook: Optional[RefreshHook] = None) -> RecurringProcessor:
        return RecurringProcessor(
            self.rules,
            self.ledger,
            self.coordinator,
            guard=self.guard,
            settings=self.settings,
            refresh_hook=refresh_hook,
        )

    def service(self) -> RecurringService:
        return RecurringService(self.rules, self.ledger, self.coordinator)


def build_context(workbook: Path) -> AppContext:
    """Build gateways, cache and guard around a workbook file."""
    settings = load_settings(workbook)
    backend = WorkbookBackend(workbook)
    cache = DataCache(ttl=settings.cache_ttl)
    return AppContext(
        workbook=workbook,
        settings=settings,
        cache=cache,
        rules=RuleStoreGateway(backend, backend, cache, settings),
        ledger=LedgerStore(backend, backend, cache, settings),
        coordinator=CacheCoordinator(cache),
    )


def resolve_workbook(explicit: Optional[str]) -> Path:
    """Find the workbook or abort the command with a helpful message."""
    path = find_workbook(Path(explicit) if explicit else None)
    if path is None or not path.is_file():
        raise click.UsageError(
            "No workbook found. Pass --workbook, set RECURBOOK_WORKBOOK "
            "or create recurbook.yaml in the current directory."
        )
    return path


def parse_day(value: Optional[object]) -> Optional[date]:
    """Convert a click DateTime option value to a date."""
    return value.date() if value is not None else None


class AmountParamType(click.ParamType):
    """Click parameter type for decimal money amounts."""

    name = "amount"

    def convert(self, value, param, ctx):
        if isinstance(value, Decimal):
            return value
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            self.fail(f"{value!r} is not a valid amount", param, ctx)
        if not amount.is_finite():
            self.fail(f"{value!r} is not a valid amount", param, ctx)
        return amount


AMOUNT = AmountParamType()
