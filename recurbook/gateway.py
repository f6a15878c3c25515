"""Gateways to the recurring sheet and the ledger sheet.

Pure I/O wrappers: they translate between wire records and schema models,
consult and populate the dataset cache, and turn write failures into
DispatchResult values. No scheduling policy lives here.

All operations are non-transactional and eventually consistent: a read
issued right after a write may not reflect it yet.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Any, Optional

from pydantic import ValidationError

from . import constants
from .cache import DataCache
from .schema import LedgerEntry, RecurringRule, Settings
from .transport import (
    CommandTransport,
    DispatchResult,
    QueryTransport,
    TransportError,
    dispatch,
    run_query,
)
from .types import Operation, QueryAction

logger = logging.getLogger(__name__)


def new_rule_id() -> str:
    """Generate an id for a rule created from this client."""
    return uuid.uuid4().hex


def schedule_fields(next_due: Optional[date], processed_at: datetime) -> dict[str, Any]:
    """Wire fields written when a rule is advanced or retired."""
    return {
        "nextDue": next_due.isoformat() if next_due is not None else None,
        "lastProcessed": processed_at.isoformat(),
    }


def _records(data: Any, key: str) -> list[Any]:
    """Extract a record list from a response; anything malformed means no data."""
    if not isinstance(data, dict):
        return []
    records = data.get(key)
    if not isinstance(records, list):
        return []
    return records


def parse_rules(data: Any) -> list[RecurringRule]:
    """
    Parse a ``getRecurringTransactions`` response into rules.

    Records that fail validation are logged and skipped so one bad row never
    hides the rest of the sheet.
    """
    rules = []
    for record in _records(data, constants.DATASET_RECURRING):
        try:
            rules.append(RecurringRule.model_validate(record))
        except ValidationError as e:
            record_id = record.get("id") if isinstance(record, dict) else None
            logger.warning("Skipping invalid recurring record %s: %s", record_id, e)
    return rules


def parse_entries(data: Any) -> list[LedgerEntry]:
    """Parse a ``getTransactions`` response, numbering rows from 1."""
    entries = []
    for position, record in enumerate(_records(data, constants.DATASET_TRANSACTIONS), 1):
        try:
            entry = LedgerEntry.model_validate(record)
        except ValidationError as e:
            logger.warning("Skipping invalid ledger row %d: %s", position, e)
            continue
        entry.row_index = position
        entries.append(entry)
    return entries


class _CachedReader:
    """Shared cache-then-query read path."""

    def __init__(self, query: QueryTransport, cache: DataCache, settings: Settings):
        self.query = query
        self.cache = cache
        self.settings = settings

    async def _read(self, action: QueryAction, key: str, force_refresh: bool) -> Any:
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Serving '%s' from cache", key)
                return cached

        try:
            data = await run_query(self.query, action, self.settings.query_timeout)
        except TransportError as e:
            stale = self.cache.get_stale(key)
            if stale is not None:
                logger.warning("Failed to load '%s', using cached data: %s", key, e)
                return stale
            logger.error("Failed to load '%s': %s", key, e)
            return None

        if data is not None:
            self.cache.set(key, data)
        return data


class RuleStoreGateway(_CachedReader):
    """Reads and writes recurring rules."""

    def __init__(
        self,
        query: QueryTransport,
        command: CommandTransport,
        cache: DataCache,
        settings: Optional[Settings] = None,
    ):
        super().__init__(query, cache, settings or Settings())
        self.command = command

    async def list_all(self, force_refresh: bool = False) -> list[RecurringRule]:
        """
        Get all recurring rules.

        Args:
            force_refresh: Skip the cache and query the backend

        Returns:
            Rules in store order; an empty list when nothing can be loaded
        """
        data = await self._read(QueryAction.GET_RECURRING, constants.DATASET_RECURRING, force_refresh)
        return parse_rules(data)

    async def fetch(self, rule_id: str) -> Optional[RecurringRule]:
        """
        Re-read a single rule straight from the backend.

        Unlike :meth:`list_all` this never answers from the cache and never
        falls back to it, so callers can rely on what they get.

        Raises:
            TransportError: If the backend cannot be queried
        """
        data = await run_query(self.query, QueryAction.GET_RECURRING, self.settings.query_timeout)
        if data is not None:
            self.cache.set(constants.DATASET_RECURRING, data)
        return next((rule for rule in parse_rules(data) if rule.id == rule_id), None)

    async def create(self, rule: RecurringRule) -> Optional[str]:
        """
        Send a new rule to the backend.

        Returns:
            The rule id if the command was dispatched, otherwise None
        """
        fields = rule.to_wire()
        fields["recurringId"] = fields.pop("id")
        result = await dispatch(self.command, Operation.ADD_RECURRING, fields)
        if not result:
            return None
        logger.info("Created recurring rule '%s' (%s)", rule.payee, rule.id)
        return rule.id

    async def update(self, rule_id: str, fields: dict[str, Any]) -> DispatchResult:
        """Send a partial update; ``fields`` use wire (camelCase) names."""
        return await dispatch(
            self.command, Operation.UPDATE_RECURRING, {"recurringId": rule_id, **fields}
        )

    async def delete(self, rule_id: str) -> DispatchResult:
        result = await dispatch(self.command, Operation.DELETE_RECURRING, {"recurringId": rule_id})
        if result:
            logger.info("Deleted recurring rule %s", rule_id)
        return result


class LedgerStore(_CachedReader):
    """Reads and writes ledger rows, addressed by 1-based row index."""

    def __init__(
        self,
        query: QueryTransport,
        command: CommandTransport,
        cache: DataCache,
        settings: Optional[Settings] = None,
    ):
        super().__init__(query, cache, settings or Settings())
        self.command = command

    async def list_entries(self, force_refresh: bool = False) -> list[LedgerEntry]:
        data = await self._read(
            QueryAction.GET_TRANSACTIONS, constants.DATASET_TRANSACTIONS, force_refresh
        )
        return parse_entries(data)

    async def add(self, entry: LedgerEntry) -> DispatchResult:
        return await dispatch(self.command, Operation.ADD, entry.to_wire())

    async def update(self, row_index: int, entry: LedgerEntry) -> DispatchResult:
        if row_index < 1:
            raise ValueError("row_index is 1-based")
        return await dispatch(
            self.command, Operation.UPDATE, {"rowIndex": row_index, **entry.to_wire()}
        )

    async def delete(self, row_index: int) -> DispatchResult:
        if row_index < 1:
            raise ValueError("row_index is 1-based")
        return await dispatch(self.command, Operation.DELETE, {"rowIndex": row_index})
