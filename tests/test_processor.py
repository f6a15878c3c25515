"""Tests for the processing engine."""

import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest

from recurbook.processor import (
    BatchSummary,
    Outcome,
    RuleResult,
    advance,
    materialize,
    processed_on,
    recurring_note,
    skip_reason,
)
from recurbook.transport import TransportError
from recurbook.types import Frequency, Kind, Operation
from tests.conftest import FIXED_NOW, TODAY, FakeBackend, Harness, make_rule


def run(coro):
    return asyncio.run(coro)


class TestMaterialize:
    """Tests for building ledger entries from rules."""

    def test_copies_rule_fields(self):
        rule = make_rule(amount=Decimal("12.50"), kind=Kind.INCOME, category="Gifts")
        entry = materialize(rule, TODAY)

        assert entry.entry_date == TODAY
        assert entry.day_of_week == "Sunday"
        assert entry.kind == Kind.INCOME
        assert entry.amount == Decimal("12.50")
        assert entry.category == "Gifts"
        assert entry.account == "Checking"
        assert entry.payee == "Landlord"

    def test_notes_without_user_notes(self):
        assert recurring_note(make_rule(frequency=Frequency.MONTHLY)) == "Recurring monthly"

    def test_notes_with_user_notes(self):
        rule = make_rule(notes="Flat 4", frequency=Frequency.BIWEEKLY)
        assert recurring_note(rule) == "Flat 4 - Recurring bi-weekly"

    def test_entry_date_is_processing_day(self):
        """An overdue rule is written with today's date, not its due date."""
        rule = make_rule(next_due=date(2026, 1, 15))
        assert materialize(rule, TODAY).entry_date == TODAY


class TestAdvance:
    """Tests for advance()."""

    def test_monthly(self):
        assert advance(make_rule(next_due=TODAY), TODAY) == date(2026, 3, 1)

    def test_steps_from_due_date_not_today(self):
        """An overdue rule advances from its due date."""
        rule = make_rule(frequency=Frequency.WEEKLY, next_due=date(2026, 1, 20))
        assert advance(rule, TODAY) == date(2026, 1, 27)

    def test_retires_past_end(self):
        rule = make_rule(frequency=Frequency.WEEKLY, end_date=date(2026, 2, 5), next_due=TODAY)
        assert advance(rule, TODAY) is None

    def test_retires_on_end_date(self):
        rule = make_rule(frequency=Frequency.DAILY, end_date=TODAY, next_due=TODAY)
        assert advance(rule, TODAY) is None

    def test_candidate_on_end_date_kept(self):
        rule = make_rule(frequency=Frequency.WEEKLY, end_date=date(2026, 2, 8), next_due=TODAY)
        assert advance(rule, TODAY) == date(2026, 2, 8)


class TestSkipReason:
    """Tests for the re-verification step."""

    def test_eligible(self):
        assert skip_reason(make_rule(), TODAY) is None

    def test_missing(self):
        assert skip_reason(None, TODAY) == "rule no longer exists"

    def test_retired(self):
        assert skip_reason(make_rule(next_due=None), TODAY) == "rule is retired"

    def test_processed_today(self):
        rule = make_rule(last_processed=datetime(2026, 2, 1, 7, 30))
        assert skip_reason(rule, TODAY) == "already processed today"

    def test_processed_yesterday(self):
        rule = make_rule(last_processed=datetime(2026, 1, 31, 23, 59))
        assert skip_reason(rule, TODAY) is None

    def test_not_due_yet(self):
        assert skip_reason(make_rule(next_due=date(2026, 2, 2)), TODAY) == "not due yet"

    def test_not_started(self):
        rule = make_rule(start_date=date(2026, 3, 1))
        assert skip_reason(rule, TODAY) == "not started yet"

    def test_processed_on_naive(self):
        assert processed_on(datetime(2026, 2, 1, 23, 0)) == TODAY


class TestBatchSummary:
    """Tests for summary messages."""

    def test_nothing_due(self):
        assert BatchSummary(total=0).message == "No recurring transactions are currently due."

    def test_counts_and_errors(self):
        summary = BatchSummary(
            total=3,
            results=[
                RuleResult("a", "A", Outcome.ADVANCED),
                RuleResult("b", "B", Outcome.FAILED, error="Failed to process: B"),
                RuleResult("c", "C", Outcome.SKIPPED, reason="already processed today"),
            ],
        )
        assert summary.processed == 1
        assert summary.message == (
            "Processed 1 of 3 recurring transactions.\n\nErrors:\nFailed to process: B"
        )

    def test_advance_failed_counts_as_materialized(self):
        result = RuleResult("a", "A", Outcome.ADVANCE_FAILED, error="x")
        assert result.materialized
        assert BatchSummary(total=1, results=[result]).processed == 1


class TestProcessDue:
    """End-to-end tests for process_due() against the in-memory backend."""

    def test_monthly_rule_advanced(self):
        backend = FakeBackend([make_rule()])
        summary = run(Harness(backend).processor().process_due())

        assert summary.total == 1
        assert summary.processed == 1
        assert summary.results[0].outcome == Outcome.ADVANCED
        assert summary.results[0].provisional
        assert len(backend.rows) == 1
        assert backend.rows[0]["date"] == "2026-02-01"
        assert backend.rows[0]["notes"] == "Recurring monthly"
        assert backend.rule("rent")["nextDue"] == "2026-03-01"
        assert backend.rule("rent")["lastProcessed"] == FIXED_NOW.isoformat()

    def test_weekly_rule_retired(self):
        rule = make_rule(frequency=Frequency.WEEKLY, end_date=date(2026, 2, 5))
        backend = FakeBackend([rule])
        summary = run(Harness(backend).processor().process_due())

        assert summary.results[0].outcome == Outcome.RETIRED
        assert len(backend.rows) == 1
        assert backend.rule("rent")["nextDue"] is None

    def test_entry_written_before_schedule_update(self):
        backend = FakeBackend([make_rule()])
        run(Harness(backend).processor().process_due())

        operations = [p["operation"] for p in backend.sent]
        assert operations == [Operation.ADD.value, Operation.UPDATE_RECURRING.value]

    def test_second_run_same_day_writes_nothing(self):
        backend = FakeBackend([make_rule(frequency=Frequency.DAILY, next_due=date(2026, 1, 30))])
        harness = Harness(backend)
        run(harness.processor().process_due())
        second = run(harness.processor().process_due())

        assert len(backend.rows) == 1
        assert second.processed == 0

    def test_second_run_with_stale_snapshot_skipped(self):
        """The re-read catches what a stale due list would miss."""
        rule = make_rule(frequency=Frequency.DAILY, next_due=date(2026, 1, 30))
        backend = FakeBackend([rule])
        harness = Harness(backend)
        processor = harness.processor()
        run(processor.process_due())

        result = run(processor.process_rule(rule, TODAY, FIXED_NOW))
        assert result.outcome == Outcome.SKIPPED
        assert result.reason == "already processed today"
        assert len(backend.rows) == 1

    def test_concurrent_batches_write_once(self):
        backend = FakeBackend([make_rule()])
        harness = Harness(backend)

        async def both():
            return await asyncio.gather(
                harness.processor().process_due(), harness.processor().process_due()
            )

        first, second = run(both())
        assert len(backend.rows) == 1
        assert first.processed + second.processed == 1
        assert len(harness.guard) == 0

    def test_materialize_failure_leaves_schedule(self):
        backend = FakeBackend([make_rule()])
        backend.fail_operations.add(Operation.ADD)
        summary = run(Harness(backend).processor().process_due())

        assert summary.results[0].outcome == Outcome.FAILED
        assert summary.errors == ["Failed to process: Landlord"]
        assert backend.rule("rent")["nextDue"] == "2026-02-01"
        assert backend.sent_operations(Operation.UPDATE_RECURRING) == []

    def test_advance_failure_reported(self):
        backend = FakeBackend([make_rule()])
        backend.fail_operations.add(Operation.UPDATE_RECURRING)
        summary = run(Harness(backend).processor().process_due())

        result = summary.results[0]
        assert result.outcome == Outcome.ADVANCE_FAILED
        assert result.error.startswith("Error with Landlord:")
        assert len(backend.rows) == 1
        assert backend.rule("rent")["nextDue"] == "2026-02-01"

    def test_fetch_failure_isolated(self, monkeypatch):
        """One failing rule does not stop the rest of the batch."""
        backend = FakeBackend([make_rule("a", payee="A"), make_rule("b", payee="B")])
        harness = Harness(backend)
        original = harness.rules.fetch

        async def flaky_fetch(rule_id):
            if rule_id == "a":
                raise TransportError("timed out")
            return await original(rule_id)

        monkeypatch.setattr(harness.rules, "fetch", flaky_fetch)
        summary = run(harness.processor().process_due())

        assert [r.outcome for r in summary.results] == [Outcome.FAILED, Outcome.ADVANCED]
        assert summary.errors == ["Error with A: timed out"]
        assert summary.message.startswith("Processed 1 of 2 recurring transactions.")

    def test_unexpected_error_isolated(self, monkeypatch):
        backend = FakeBackend([make_rule("a", payee="A"), make_rule("b", payee="B")])
        harness = Harness(backend)
        original = harness.ledger.add
        calls = []

        async def exploding_add(entry):
            calls.append(entry.payee)
            if entry.payee == "A":
                raise RuntimeError("boom")
            return await original(entry)

        monkeypatch.setattr(harness.ledger, "add", exploding_add)
        summary = run(harness.processor().process_due())

        assert calls == ["A", "B"]
        assert summary.errors == ["Error with A: boom"]
        assert not harness.guard.is_held("a")

    def test_store_order(self):
        backend = FakeBackend(
            [make_rule("z", payee="Z"), make_rule("a", payee="A", next_due=date(2026, 1, 1))]
        )
        run(Harness(backend).processor().process_due())
        assert [row["payee"] for row in backend.rows] == ["Z", "A"]

    def test_ineligible_rules_untouched(self):
        backend = FakeBackend(
            [
                make_rule("future", next_due=date(2026, 3, 1)),
                make_rule("retired", next_due=None),
                make_rule("ended", end_date=date(2026, 1, 10), next_due=date(2026, 1, 5)),
            ]
        )
        summary = run(Harness(backend).processor().process_due())

        assert summary.total == 0
        assert backend.sent == []

    def test_rule_in_flight_elsewhere_skipped(self):
        backend = FakeBackend([make_rule()])
        harness = Harness(backend)
        harness.guard.acquire("rent")
        summary = run(harness.processor().process_due())

        assert summary.results[0].reason == "already being processed"
        assert backend.rows == []
        assert harness.guard.is_held("rent")

    def test_explicit_today(self):
        backend = FakeBackend([make_rule(next_due=date(2026, 2, 3))])
        summary = run(Harness(backend).processor().process_due(date(2026, 2, 3)))

        assert summary.processed == 1
        assert backend.rows[0]["date"] == "2026-02-03"


class TestTriggers:
    """Tests for run(), auto_run() and the post-batch refresh."""

    def test_auto_run_once(self):
        backend = FakeBackend([make_rule()])
        processor = Harness(backend).processor()

        assert run(processor.auto_run()).processed == 1
        assert run(processor.auto_run()) is None
        assert len(backend.rows) == 1

    def test_auto_run_swallows_errors(self):
        backend = FakeBackend([make_rule()])
        processor = Harness(backend).processor()

        async def broken(today=None):
            raise RuntimeError("boom")

        processor.process_due = broken
        assert run(processor.auto_run()) is None

    def test_unreachable_backend_means_nothing_due(self):
        backend = FakeBackend([make_rule()])
        backend.fail_queries = True
        summary = run(Harness(backend).processor().run())

        assert summary.total == 0
        assert backend.sent == []

    def test_every_scheduled_refresh_awaited(self):
        """A slow refresh from an earlier batch is still awaited after a later batch."""
        backend = FakeBackend([make_rule("a")])
        harness = Harness(backend)
        delays = [0.05, 0.0]
        finished = []

        async def reload():
            delay = delays.pop(0)
            await asyncio.sleep(delay)
            finished.append(delay)

        processor = harness.processor(refresh_hook=reload)

        async def go():
            await processor.process_due()
            backend.rule("a")["lastProcessed"] = None
            backend.rule("a")["nextDue"] = "2026-02-01"
            await asyncio.sleep(0.01)
            await processor.process_due()
            await processor.wait_for_refresh()

        run(go())
        assert sorted(finished) == [0.0, 0.05]

    def test_refresh_hook_called_after_batch(self):
        backend = FakeBackend([make_rule()])
        harness = Harness(backend)
        calls = []

        async def reload():
            calls.append(await harness.ledger.list_entries())

        processor = harness.processor(refresh_hook=reload)

        async def go():
            await processor.run()
            await processor.wait_for_refresh()

        run(go())
        assert len(calls) == 1
        assert len(calls[0]) == 1

    def test_no_refresh_when_nothing_due(self):
        harness = Harness(FakeBackend())
        calls = []
        processor = harness.processor(refresh_hook=lambda: calls.append(1))

        async def go():
            await processor.run()
            await processor.wait_for_refresh()

        run(go())
        assert calls == []

    def test_batch_invalidates_cache(self):
        backend = FakeBackend([make_rule()])
        harness = Harness(backend)
        run(harness.processor().process_due())

        rules = run(harness.rules.list_all())
        assert rules[0].next_due == date(2026, 3, 1)


@pytest.mark.parametrize(
    "frequency,expected",
    [
        (Frequency.DAILY, date(2026, 2, 2)),
        (Frequency.BIWEEKLY, date(2026, 2, 15)),
        (Frequency.QUARTERLY, date(2026, 5, 1)),
        (Frequency.YEARLY, date(2027, 2, 1)),
    ],
)
def test_next_due_written_per_frequency(frequency, expected):
    backend = FakeBackend([make_rule(frequency=frequency)])
    run(Harness(backend).processor().process_due())
    assert backend.rule("rent")["nextDue"] == expected.isoformat()
