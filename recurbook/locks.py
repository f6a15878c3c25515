"""In-process guard against processing the same rule twice at once."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class ProcessingGuard:
    """Set of rule ids currently being processed.

    Overlapping triggers (start-up auto-run, a manual run, a reload) share
    one guard, so a rule is only ever worked on by one of them at a time.
    The guard lives in memory and only covers the running process: two
    separate processes can still pick up the same due rule, since the
    backend has no atomic compare-and-set.
    """

    def __init__(self):
        self._in_flight: set[str] = set()

    def acquire(self, rule_id: str) -> bool:
        """Claim ``rule_id``; False if another batch already holds it."""
        if rule_id in self._in_flight:
            return False
        self._in_flight.add(rule_id)
        return True

    def release(self, rule_id: str) -> None:
        self._in_flight.discard(rule_id)

    @contextmanager
    def hold(self, rule_id: str) -> Iterator[bool]:
        """
        Claim ``rule_id`` for the duration of the block.

        Yields True when the claim succeeded. The id is released on every
        exit path, including exceptions, but only if this block claimed it.
        """
        acquired = self.acquire(rule_id)
        if not acquired:
            logger.debug("Rule %s is already being processed", rule_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(rule_id)

    def is_held(self, rule_id: str) -> bool:
        return rule_id in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)
