"""Processing engine: materialize due rules into ledger entries.

For each due rule the engine walks a small state machine:

    Candidate -> Locked -> Verified -> Materialized -> Advanced | Retired -> Unlocked
    Candidate -> Locked -> Skipped -> Unlocked

Locked
    The rule id is claimed in the shared ProcessingGuard. A rule already
    claimed by an overlapping batch is skipped.
Verified
    The rule is re-read from the backend (never from the selection snapshot)
    and must still exist, still have a next due date, not have been processed
    today, be due, and have started.
Materialized
    A ledger entry dated today is written. If the write fails the schedule is
    left untouched and the rule stays due for the next trigger.
Advanced / Retired
    nextDue moves to the next occurrence, or becomes null when the end date is
    today or the next occurrence would pass it. nextDue and lastProcessed are
    written in one update. lastProcessed is only written here, after the entry,
    so a failed update leaves the rule stuck on "due" rather than silently
    guarded against.
Unlocked
    The claim is released on every exit path.

Every write is fire-and-forget, so results are reported as provisional.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from . import constants
from .cache import CacheCoordinator
from .gateway import LedgerStore, RuleStoreGateway, schedule_fields
from .locks import ProcessingGuard
from .recurrence import next_occurrence
from .schema import LedgerEntry, RecurringRule, Settings
from .status import select_due
from .transport import TransportError

logger = logging.getLogger(__name__)

RefreshHook = Callable[[], Union[None, Awaitable[None]]]


def local_now() -> datetime:
    return datetime.now().astimezone()


class Outcome(str, Enum):
    """What happened to one rule in one processing cycle."""

    ADVANCED = "advanced"
    RETIRED = "retired"
    SKIPPED = "skipped"
    FAILED = "failed"
    ADVANCE_FAILED = "advance_failed"


MATERIALIZED_OUTCOMES = frozenset({Outcome.ADVANCED, Outcome.RETIRED, Outcome.ADVANCE_FAILED})


@dataclass
class RuleResult:
    """Result of processing a single rule."""

    rule_id: str
    payee: str
    outcome: Outcome
    next_due: Optional[date] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    provisional: bool = False

    @property
    def materialized(self) -> bool:
        return self.outcome in MATERIALIZED_OUTCOMES


@dataclass
class BatchSummary:
    """Result of a processing batch."""

    total: int
    results: list[RuleResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for r in self.results if r.materialized)

    @property
    def errors(self) -> list[str]:
        return [r.error for r in self.results if r.error]

    @property
    def message(self) -> str:
        """Human-readable summary shown after a manual run."""
        if self.total == 0:
            return "No recurring transactions are currently due."
        message = f"Processed {self.processed} of {self.total} recurring transactions."
        if self.errors:
            message += "\n\nErrors:\n" + "\n".join(self.errors)
        return message


def processed_on(timestamp: datetime) -> date:
    """Calendar day of a timestamp, in local time when it carries an offset."""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone()
    return timestamp.date()


def recurring_note(rule: RecurringRule) -> str:
    """Notes for an entry materialized from ``rule``, e.g. ``Rent - Recurring monthly``."""
    provenance = f"{constants.RECURRING_NOTE_PREFIX} {rule.frequency.label.lower()}"
    if rule.notes:
        return f"{rule.notes}{constants.NOTES_SEPARATOR}{provenance}"
    return provenance


def materialize(rule: RecurringRule, today: date) -> LedgerEntry:
    """Build the ledger entry for the occurrence of ``rule`` processed on ``today``."""
    return LedgerEntry(
        entry_date=today,
        day_of_week=constants.WEEKDAY_NAMES[today.weekday()],
        kind=rule.kind,
        amount=rule.amount,
        category=rule.category,
        account=rule.account,
        payee=rule.payee,
        notes=recurring_note(rule),
    )


def advance(rule: RecurringRule, today: date) -> Optional[date]:
    """
    Compute the rule's next due date after the current occurrence.

    Returns:
        The next occurrence, or None when the rule must retire because its
        end date is today or the next occurrence would pass the end date
    """
    candidate = next_occurrence(rule.next_due, rule.frequency)
    if rule.end_date is not None and (rule.end_date == today or candidate > rule.end_date):
        return None
    return candidate


def skip_reason(rule: Optional[RecurringRule], today: date) -> Optional[str]:
    """Why a freshly re-read rule must not be processed today, if at all."""
    if rule is None:
        return "rule no longer exists"
    if rule.next_due is None:
        return "rule is retired"
    if rule.last_processed is not None and processed_on(rule.last_processed) == today:
        return "already processed today"
    if rule.next_due > today:
        return "not due yet"
    if rule.start_date > today:
        return "not started yet"
    return None


class RecurringProcessor:
    """
    Processes due recurring rules against the backend.

    Several processors may share one ProcessingGuard; that is how overlapping
    triggers in one process are kept from handling the same rule twice.

    Example:
        >>> processor = RecurringProcessor(rules, ledger, coordinator, guard=guard)
        >>> summary = await processor.run()
        >>> print(summary.message)
    """

    def __init__(
        self,
        rules: RuleStoreGateway,
        ledger: LedgerStore,
        coordinator: CacheCoordinator,
        guard: Optional[ProcessingGuard] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = local_now,
        refresh_hook: Optional[RefreshHook] = None,
    ):
        self.rules = rules
        self.ledger = ledger
        self.coordinator = coordinator
        self.guard = guard if guard is not None else ProcessingGuard()
        self.settings = settings or Settings()
        self.clock = clock
        self.refresh_hook = refresh_hook
        self._auto_ran = False
        self._refresh_tasks: set[asyncio.Task] = set()

    async def process_rule(self, rule: RecurringRule, today: date, now: datetime) -> RuleResult:
        """Run one rule through the state machine."""
        with self.guard.hold(rule.id) as acquired:
            if not acquired:
                return RuleResult(
                    rule_id=rule.id,
                    payee=rule.payee,
                    outcome=Outcome.SKIPPED,
                    reason="already being processed",
                )
            return await self._process_claimed(rule, today, now)

    async def _process_claimed(
        self, rule: RecurringRule, today: date, now: datetime
    ) -> RuleResult:
        try:
            current = await self.rules.fetch(rule.id)
        except TransportError as e:
            logger.error("Could not re-read recurring rule %s: %s", rule.id, e)
            return RuleResult(
                rule_id=rule.id,
                payee=rule.payee,
                outcome=Outcome.FAILED,
                error=f"Error with {rule.payee}: {e}",
            )

        reason = skip_reason(current, today)
        if reason is not None:
            logger.info("Skipping recurring rule %s: %s", rule.id, reason)
            return RuleResult(
                rule_id=rule.id, payee=rule.payee, outcome=Outcome.SKIPPED, reason=reason
            )

        written = await self.ledger.add(materialize(current, today))
        if not written:
            return RuleResult(
                rule_id=current.id,
                payee=current.payee,
                outcome=Outcome.FAILED,
                error=f"Failed to process: {current.payee}",
            )

        if self.settings.advance_delay:
            await asyncio.sleep(self.settings.advance_delay)

        next_due = advance(current, today)
        saved = await self.rules.update(current.id, schedule_fields(next_due, now))
        if not saved:
            logger.error(
                "Entry for recurring rule %s was written but its schedule was not advanced: %s",
                current.id,
                saved.error,
            )
            return RuleResult(
                rule_id=current.id,
                payee=current.payee,
                outcome=Outcome.ADVANCE_FAILED,
                next_due=current.next_due,
                error=f"Error with {current.payee}: schedule not advanced ({saved.error})",
                provisional=True,
            )

        if next_due is None:
            logger.info("Processed recurring rule %s and retired it", current.id)
            outcome = Outcome.RETIRED
        else:
            logger.info("Processed recurring rule %s, next due %s", current.id, next_due)
            outcome = Outcome.ADVANCED
        return RuleResult(
            rule_id=current.id,
            payee=current.payee,
            outcome=outcome,
            next_due=next_due,
            provisional=True,
        )

    async def process_due(self, today: Optional[date] = None) -> BatchSummary:
        """
        Process every rule that is due on ``today``.

        Rules are handled one after another in store order. A failing rule
        never stops the batch.

        Args:
            today: Processing day (defaults to the clock's date)

        Returns:
            BatchSummary with one result per due rule
        """
        now = self.clock()
        if today is None:
            today = now.date()

        due = select_due(await self.rules.list_all(), today)
        summary = BatchSummary(total=len(due))
        if not due:
            logger.debug("No recurring rules due on %s", today)
            return summary

        for rule in due:
            try:
                result = await self.process_rule(rule, today, now)
            except Exception as e:
                logger.exception("Unexpected error processing recurring rule %s", rule.id)
                result = RuleResult(
                    rule_id=rule.id,
                    payee=rule.payee,
                    outcome=Outcome.FAILED,
                    error=f"Error with {rule.payee}: {e}",
                )
            summary.results.append(result)

        self.coordinator.batch_processed()
        self._schedule_refresh()
        return summary

    async def run(self, today: Optional[date] = None) -> BatchSummary:
        """Explicit user-triggered run; the summary is meant to be shown."""
        summary = await self.process_due(today)
        logger.info(summary.message)
        return summary

    async def auto_run(self, today: Optional[date] = None) -> Optional[BatchSummary]:
        """
        Silent run, performed at most once per processor.

        Nothing is reported to the user and nothing is raised; outcomes only
        go to the log. Returns None when this processor already auto-ran or
        the run crashed.
        """
        if self._auto_ran:
            return None
        self._auto_ran = True
        try:
            summary = await self.process_due(today)
        except Exception:
            logger.exception("Automatic processing of recurring rules failed")
            return None
        if summary.total:
            logger.info("Automatic run: %s", summary.message.splitlines()[0])
        for error in summary.errors:
            logger.warning("Automatic run: %s", error)
        return summary

    def _schedule_refresh(self) -> None:
        if self.refresh_hook is None:
            return
        task = asyncio.ensure_future(self._delayed_refresh())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _delayed_refresh(self) -> None:
        # Backend reads lag behind writes; give them time before reloading
        await asyncio.sleep(self.settings.refresh_delay)
        self.coordinator.reset()
        try:
            result = self.refresh_hook()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Refresh after processing failed")

    async def wait_for_refresh(self) -> None:
        """Wait for every scheduled post-batch refresh, if any."""
        while True:
            pending = [task for task in self._refresh_tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending)
