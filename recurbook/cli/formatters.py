"""Output formatting functions for CLI commands."""

import csv
import json
import sys
from datetime import date

import click

from recurbook import constants
from recurbook.schema import RecurringRule
from recurbook.status import classify
from recurbook.types import Kind


def signed_amount(rule: RecurringRule) -> str:
    """Amount with the sign implied by the rule's kind."""
    sign = "+" if rule.kind == Kind.INCOME else "-"
    return f"{sign}{rule.amount:.2f}"


def print_rule_table(rules: list[RecurringRule], today: date) -> None:
    """
    Print rules as a formatted ASCII table.

    Shows payee, category, signed amount, frequency, next due date and the
    status on ``today``. Column widths adapt to the content.

    Args:
        rules: Rules to display.
        today: Day used to compute each rule's status.
    """
    payee_width = max([len(r.payee) for r in rules] + [len("Payee")])
    payee_width = min(payee_width, constants.MAX_TABLE_COLUMN_WIDTH)
    category_width = max([len(r.category) for r in rules] + [len("Category")])
    category_width = min(category_width, constants.MAX_TABLE_COLUMN_WIDTH)

    header = (
        f"{'Payee':<{payee_width}}  {'Category':<{category_width}}  {'Amount':>10}  "
        f"{'Frequency':<10}  {'Next Due':<10}  {'Status':<8}"
    )
    click.echo(header)
    click.echo("-" * len(header))

    for r in rules:
        next_due = r.next_due.isoformat() if r.next_due else "-"
        click.echo(
            f"{r.payee[:payee_width]:<{payee_width}}  "
            f"{r.category[:category_width]:<{category_width}}  "
            f"{signed_amount(r):>10}  "
            f"{r.frequency.label:<10}  "
            f"{next_due:<10}  "
            f"{classify(r, today).value:<8}"
        )

    click.echo(f"\nTotal: {len(rules)} recurring transactions")


def print_rule_csv(rules: list[RecurringRule], today: date) -> None:
    """Print rules as CSV, one row per rule, with the status on ``today``."""
    writer = csv.writer(sys.stdout)
    writer.writerow(
        ["ID", "Payee", "Category", "Account", "Type", "Amount", "Frequency", "Next Due", "Status"]
    )
    for r in rules:
        writer.writerow(
            [
                r.id,
                r.payee,
                r.category,
                r.account,
                r.kind.value,
                f"{r.amount:.2f}",
                r.frequency.value,
                r.next_due.isoformat() if r.next_due else "",
                classify(r, today).value,
            ],
        )


def print_rule_json(rules: list[RecurringRule], today: date) -> None:
    """Print rules as a JSON array in wire format plus a ``status`` key."""
    payload = [{**r.to_wire(), "status": classify(r, today).value} for r in rules]
    click.echo(json.dumps(payload, indent=2, default=str))
