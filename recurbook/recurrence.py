"""Schedule calculator: next occurrence and bounded occurrence walks."""

import logging
from collections.abc import Iterator
from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta

from .types import Frequency

logger = logging.getLogger(__name__)

# relativedelta clamps month overflow to the last valid day (Jan 31 + 1 month = Feb 28/29)
FREQUENCY_STEPS = {
    Frequency.DAILY: relativedelta(days=1),
    Frequency.WEEKLY: relativedelta(weeks=1),
    Frequency.BIWEEKLY: relativedelta(weeks=2),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.QUARTERLY: relativedelta(months=3),
    Frequency.YEARLY: relativedelta(years=1),
}


def next_occurrence(from_date: date, frequency: Frequency) -> date:
    """
    Calculate the occurrence that follows ``from_date``.

    Args:
        from_date: Current occurrence date
        frequency: Recurrence frequency of the rule

    Returns:
        The next occurrence date, always strictly after ``from_date``

    Example:
        >>> next_occurrence(date(2026, 1, 31), Frequency.MONTHLY)
        datetime.date(2026, 2, 28)
    """
    return from_date + FREQUENCY_STEPS[frequency]


def occurrences(start: date, frequency: Frequency, until: date) -> Iterator[date]:
    """
    Yield occurrence dates from ``start`` up to and including ``until``.

    The walk also ends at the last occurrence the calendar can represent
    (``date.max``), so an open-ended ``until`` is safe.
    """
    current = start
    while current <= until:
        yield current
        try:
            current = next_occurrence(current, frequency)
        except (OverflowError, ValueError):
            logger.debug("Schedule from %s runs past the last representable date", start)
            return


def last_occurrence_on_or_before(
    start: date,
    frequency: Frequency,
    limit: date,
) -> Optional[date]:
    """
    Find the latest occurrence of a schedule that does not exceed ``limit``.

    Walks forward from ``start`` one step at a time. Every frequency advances
    by a positive span, so the walk terminates for any finite limit.

    Args:
        start: First occurrence of the schedule
        frequency: Recurrence frequency
        limit: Inclusive upper bound (usually the rule's end date)

    Returns:
        The last occurrence ``<= limit``, or None when ``start`` is already past it
    """
    last = None
    for occurrence in occurrences(start, frequency, limit):
        last = occurrence
    if last is None:
        logger.debug("Start date %s is after limit %s, no occurrence", start, limit)
    return last
