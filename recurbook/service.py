"""Authoring of recurring rules: create, edit, delete and summary counts."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError

from .cache import CacheCoordinator
from .gateway import LedgerStore, RuleStoreGateway, new_rule_id, schedule_fields
from .processor import advance, local_now, materialize
from .recurrence import last_occurrence_on_or_before
from .schema import RecurringRule
from .status import count_active, select_due
from .transport import DispatchResult
from .types import Frequency, Kind

logger = logging.getLogger(__name__)


def initial_next_due(start: date, end: Optional[date]) -> Optional[date]:
    """First occurrence of a new rule, or None when its window is empty."""
    if end is not None and start > end:
        return None
    return start


def clamp_next_due(
    rule: RecurringRule, materialized_before: Optional[date] = None
) -> RecurringRule:
    """
    Pull a next due date past the end date back onto the last valid occurrence.

    Args:
        rule: Rule with its edited end date
        materialized_before: Occurrences before this day were already written
            to the ledger; an occurrence in that range is never handed out again

    Returns:
        The rule with ``next_due`` inside its window, or retired when the
        window holds no occurrence left to write
    """
    if rule.next_due is None or rule.end_date is None or rule.next_due <= rule.end_date:
        return rule
    clamped = last_occurrence_on_or_before(rule.start_date, rule.frequency, rule.end_date)
    if clamped is not None and materialized_before is not None and clamped < materialized_before:
        logger.info(
            "Rule %s already wrote its last occurrence %s before end date %s, retiring it",
            rule.id,
            clamped,
            rule.end_date,
        )
        clamped = None
    else:
        logger.info(
            "Next due %s of rule %s is after its end date, using %s",
            rule.next_due,
            rule.id,
            clamped,
        )
    return rule.model_copy(update={"next_due": clamped})


@dataclass
class CreatedRule:
    """Result of creating a rule, including the optional first payment."""

    rule: RecurringRule
    first_payment: Optional[DispatchResult] = None

    @property
    def message(self) -> str:
        if self.first_payment is None:
            return "Recurring transaction created successfully!"
        if self.first_payment:
            return "Recurring transaction created and first payment processed!"
        return "Recurring transaction created, but failed to process first payment."


class RecurringService:
    """
    User-facing operations on recurring rules.

    Responsibilities:
        - Validate and create rules, processing the first payment when the
          rule starts today.
        - Edit and delete rules.
        - Report active/due counts for the overview.
    """

    def __init__(
        self,
        rules: RuleStoreGateway,
        ledger: LedgerStore,
        coordinator: CacheCoordinator,
        clock: Callable[[], datetime] = local_now,
    ):
        self.rules = rules
        self.ledger = ledger
        self.coordinator = coordinator
        self.clock = clock

    async def create_rule(
        self,
        payee: str,
        amount: Decimal,
        kind: Kind,
        frequency: Frequency,
        start_date: date,
        end_date: Optional[date] = None,
        category: str = "",
        account: str = "",
        notes: str = "",
    ) -> Optional[CreatedRule]:
        """
        Create a recurring rule.

        When the rule starts today its first occurrence is materialized right
        away and the rule is advanced, the same way a processing run would.

        Returns:
            CreatedRule, or None if the create command could not be sent

        Raises:
            pydantic.ValidationError: If the fields do not form a valid rule
        """
        now = self.clock()
        today = now.date()
        rule = RecurringRule(
            id=new_rule_id(),
            payee=payee,
            amount=amount,
            kind=kind,
            frequency=frequency,
            start_date=start_date,
            end_date=end_date,
            category=category,
            account=account,
            notes=notes,
            next_due=initial_next_due(start_date, end_date),
        )

        if await self.rules.create(rule) is None:
            return None
        self.coordinator.rules_changed()

        if start_date != today or rule.next_due is None:
            return CreatedRule(rule=rule)

        first_payment = await self.ledger.add(materialize(rule, today))
        if not first_payment:
            logger.error("Created rule %s but could not write its first payment", rule.id)
            return CreatedRule(rule=rule, first_payment=first_payment)
        self.coordinator.ledger_changed()

        next_due = advance(rule, today)
        saved = await self.rules.update(rule.id, schedule_fields(next_due, now))
        if saved:
            rule = rule.model_copy(update={"next_due": next_due, "last_processed": now})
        else:
            logger.error("First payment of rule %s written but schedule not advanced", rule.id)
        return CreatedRule(rule=rule, first_payment=first_payment)

    async def edit_rule(self, rule_id: str, changes: dict[str, Any]) -> DispatchResult:
        """
        Apply field changes to a rule.

        Args:
            rule_id: Rule to edit
            changes: Field values keyed by field name (e.g. ``end_date``)

        Raises:
            KeyError: If the rule does not exist
            pydantic.ValidationError: If the edited rule is invalid
        """
        current = await self.rules.fetch(rule_id)
        if current is None:
            raise KeyError(rule_id)

        merged = {**current.model_dump(), **changes, "id": current.id}
        if current.next_due is None and merged.get("next_due") is not None:
            logger.warning("Rule %s is retired, ignoring new next due date", rule_id)
            merged["next_due"] = None
        # Occurrences before the stored next due date were written by earlier cycles
        written_before = current.next_due if current.last_processed is not None else None
        try:
            edited = clamp_next_due(RecurringRule.model_validate(merged), written_before)
        except ValidationError:
            logger.error("Invalid changes for rule %s: %s", rule_id, changes)
            raise

        fields = edited.to_wire()
        fields.pop("id")
        result = await self.rules.update(rule_id, fields)
        if result:
            self.coordinator.rules_changed()
        return result

    async def delete_rule(self, rule_id: str) -> DispatchResult:
        result = await self.rules.delete(rule_id)
        if result:
            self.coordinator.rules_changed()
        return result

    async def stats(self, today: Optional[date] = None) -> dict[str, int]:
        """Active and due counts for the recurring overview."""
        today = today or self.clock().date()
        rules = await self.rules.list_all()
        return {
            "active": count_active(rules, today),
            "due": len(select_due(rules, today)),
        }

    async def due_notice(self, today: Optional[date] = None) -> Optional[str]:
        """Reminder text when rules are waiting to be processed, else None."""
        due = (await self.stats(today))["due"]
        if not due:
            return None
        plural = due > 1
        return (
            f"You have {due} recurring transaction{'s' if plural else ''} "
            f"that {'are' if plural else 'is'} due for processing."
        )
