"""Status classification and due-set selection for recurring rules."""

import logging
from collections import Counter
from collections.abc import Iterable
from datetime import date

from .schema import RecurringRule
from .types import RuleStatus

logger = logging.getLogger(__name__)

ACTIONABLE_STATUSES = frozenset({RuleStatus.OVERDUE, RuleStatus.DUE})


def classify(rule: RecurringRule, today: date) -> RuleStatus:
    """
    Derive the lifecycle status of a rule on ``today``.

    Checks run in a fixed priority order and the first match wins, so an
    inactive rule is never reported as due even if its next date has passed:

    1. retired (no next due date)
    2. not started yet
    3. end date already passed
    4. next due date beyond the end date
    5. next due date in the past  -> OVERDUE
    6. next due date is today     -> DUE
    7. otherwise                  -> ACTIVE
    """
    if rule.next_due is None:
        return RuleStatus.INACTIVE
    if rule.start_date > today:
        return RuleStatus.INACTIVE
    if rule.end_date is not None and rule.end_date < today:
        return RuleStatus.INACTIVE
    if rule.end_date is not None and rule.next_due > rule.end_date:
        logger.warning(
            "Rule %s has next due %s after its end date %s, treating as inactive",
            rule.id,
            rule.next_due,
            rule.end_date,
        )
        return RuleStatus.INACTIVE
    if rule.next_due < today:
        return RuleStatus.OVERDUE
    if rule.next_due == today:
        return RuleStatus.DUE
    return RuleStatus.ACTIVE


def is_due(rule: RecurringRule, today: date) -> bool:
    """Whether the rule should be materialized on ``today``."""
    return classify(rule, today) in ACTIONABLE_STATUSES


def select_due(rules: Iterable[RecurringRule], today: date) -> list[RecurringRule]:
    """
    Filter rules down to the ones that are actionable on ``today``.

    Built on :func:`classify` so the due set and the displayed status can
    never disagree. Store order is preserved.

    Args:
        rules: All known rules
        today: Processing day

    Returns:
        Rules whose status is OVERDUE or DUE
    """
    return [rule for rule in rules if is_due(rule, today)]


def count_active(rules: Iterable[RecurringRule], today: date) -> int:
    """Count rules that still have occurrences ahead of them."""
    return sum(
        1
        for rule in rules
        if rule.next_due is not None and (rule.end_date is None or rule.end_date >= today)
    )


def status_counts(rules: Iterable[RecurringRule], today: date) -> dict[RuleStatus, int]:
    """Number of rules per status, with every status present."""
    counts = Counter(classify(rule, today) for rule in rules)
    return {status: counts.get(status, 0) for status in RuleStatus}
