"""Click CLI commands for recurbook."""

import asyncio
import logging
import sys
import traceback
from datetime import date

import click
import pydantic
import yaml

from recurbook import __version__, constants
from recurbook.loader import load_workbook
from recurbook.processor import local_now
from recurbook.recurrence import occurrences
from recurbook.status import select_due, status_counts
from recurbook.types import Frequency, Kind

from .builders import AMOUNT, build_context, parse_day, resolve_workbook
from .formatters import print_rule_csv, print_rule_json, print_rule_table

logger = logging.getLogger(__name__)

DATE_FORMATS = ["%Y-%m-%d"]


def _today(value) -> date:
    return parse_day(value) or local_now().date()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--workbook",
    "-w",
    type=click.Path(dir_okay=False),
    default=None,
    help=f"Workbook file (default: ${constants.ENV_WORKBOOK_FILE} or "
    f"{constants.DEFAULT_WORKBOOK_FILE})",
)
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool, workbook):
    """Recurbook - recurring transactions for spreadsheet-backed ledgers."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["workbook"] = workbook


@main.command()
@click.pass_context
def validate(ctx: click.Context):
    """Validate the workbook's rules, ledger rows and config.

    Examples:
        recurbook -w budget.yaml validate
    """
    path = resolve_workbook(ctx.obj["workbook"])
    click.echo(f"Validating workbook: {path}")

    try:
        workbook = load_workbook(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        click.echo(f"✗ Validation failed: {e}", err=True)
        if logger.isEnabledFor(logging.DEBUG):
            traceback.print_exc()
        sys.exit(1)

    counts = status_counts(workbook.recurring, local_now().date())
    click.echo("✓ Validation successful!")
    click.echo(f"  Recurring rules: {len(workbook.recurring)}")
    for status, count in counts.items():
        click.echo(f"    {status.value}: {count}")
    click.echo(f"  Transactions: {len(workbook.transactions)}")

    rule_ids = [r.id for r in workbook.recurring]
    duplicates = {rid for rid in rule_ids if rule_ids.count(rid) > 1}
    if duplicates:
        click.echo(f"\n⚠ Warning: Duplicate rule IDs found: {sorted(duplicates)}", err=True)
        sys.exit(1)


@main.command(name="list")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "csv"]),
    default="table",
    help="Output format (default: table)",
)
@click.option("--today", type=click.DateTime(formats=DATE_FORMATS), help="Evaluate status on this day")
@click.pass_context
def list_rules(ctx: click.Context, output_format: str, today):
    """List recurring rules with their status.

    Examples:
        recurbook list
        recurbook list --format json
    """
    app = build_context(resolve_workbook(ctx.obj["workbook"]))
    day = _today(today)
    rules = asyncio.run(app.rules.list_all())

    if not rules:
        click.echo("No recurring transactions set up yet.")
        return

    if output_format == "table":
        print_rule_table(rules, day)
    elif output_format == "json":
        print_rule_json(rules, day)
    elif output_format == "csv":
        print_rule_csv(rules, day)


@main.command()
@click.option("--today", type=click.DateTime(formats=DATE_FORMATS), help="Evaluate on this day")
@click.pass_context
def due(ctx: click.Context, today):
    """Show rules that are due for processing."""
    app = build_context(resolve_workbook(ctx.obj["workbook"]))
    day = _today(today)
    service = app.service()

    async def _collect():
        return select_due(await app.rules.list_all(), day), await service.due_notice(day)

    rules, notice = asyncio.run(_collect())
    if not rules:
        click.echo("No recurring transactions are currently due.")
        return
    click.echo(notice)
    print_rule_table(rules, day)


@main.command()
@click.option("--today", type=click.DateTime(formats=DATE_FORMATS), help="Process as of this day")
@click.option("--silent", is_flag=True, help="Automatic mode: log only, no summary")
@click.pass_context
def process(ctx: click.Context, today, silent: bool):
    """Write due recurring transactions to the ledger and advance them.

    Examples:
        recurbook process
        recurbook process --silent
    """
    app = build_context(resolve_workbook(ctx.obj["workbook"]))
    day = parse_day(today)

    async def _reload_ledger():
        entries = await app.ledger.list_entries(force_refresh=True)
        click.echo(f"Ledger reloaded: {len(entries)} transactions")

    async def _run():
        if silent:
            return await app.processor().auto_run(day)
        processor = app.processor(refresh_hook=_reload_ledger)
        summary = await processor.run(day)
        await processor.wait_for_refresh()
        return summary

    summary = asyncio.run(_run())
    if silent:
        return
    click.echo(summary.message)
    if summary.errors:
        sys.exit(1)


@main.command(name="next")
@click.argument("frequency", type=click.Choice([f.value for f in Frequency], case_sensitive=False))
@click.argument("start", type=click.DateTime(formats=DATE_FORMATS))
@click.option("--count", "-n", type=click.IntRange(1, constants.MAX_PREVIEW_OCCURRENCES), default=5)
@click.option("--until", type=click.DateTime(formats=DATE_FORMATS), help="Last day to include")
def next_dates(frequency: str, start, count: int, until):
    """Preview the occurrence dates of a schedule.

    FREQUENCY: daily, weekly, biweekly, monthly, quarterly or yearly
    START: First occurrence in YYYY-MM-DD format

    Examples:
        recurbook next monthly 2026-01-31
        recurbook next weekly 2026-01-01 --until 2026-03-01
    """
    freq = Frequency.parse(frequency)
    first = start.date()
    if until is not None:
        end = until.date()
        if first > end:
            click.echo("Error: Start date must be before or equal to end date", err=True)
            sys.exit(1)
        dates = list(occurrences(first, freq, end))[: constants.MAX_PREVIEW_OCCURRENCES]
    else:
        dates = []
        for occurrence in occurrences(first, freq, date.max):
            dates.append(occurrence)
            if len(dates) == count:
                break

    for occurrence in dates:
        click.echo(f"{occurrence.isoformat()}  {constants.WEEKDAY_NAMES[occurrence.weekday()]}")
    click.echo(f"\nTotal: {len(dates)} occurrences")


@main.command()
@click.option("--payee", required=True, help="Payee")
@click.option("--amount", required=True, type=AMOUNT, help="Amount (positive)")
@click.option(
    "--type",
    "kind",
    type=click.Choice([k.value for k in Kind], case_sensitive=False),
    default=Kind.EXPENSE.value,
    help="Expense or Income (default: Expense)",
)
@click.option(
    "--frequency",
    required=True,
    type=click.Choice([f.value for f in Frequency], case_sensitive=False),
)
@click.option("--start", required=True, type=click.DateTime(formats=DATE_FORMATS))
@click.option("--end", type=click.DateTime(formats=DATE_FORMATS), help="Last day (optional)")
@click.option("--category", default="", help="Category")
@click.option("--account", default="", help="Account")
@click.option("--notes", default="", help="Notes")
@click.pass_context
def add(ctx: click.Context, payee, amount, kind, frequency, start, end, category, account, notes):
    """Create a recurring transaction.

    A rule starting today has its first payment written immediately.

    Examples:
        recurbook add --payee Landlord --amount 900 --frequency monthly --start 2026-02-01
    """
    app = build_context(resolve_workbook(ctx.obj["workbook"]))
    try:
        created = asyncio.run(
            app.service().create_rule(
                payee=payee,
                amount=amount,
                kind=Kind.parse(kind),
                frequency=Frequency.parse(frequency),
                start_date=start.date(),
                end_date=parse_day(end),
                category=category,
                account=account,
                notes=notes,
            )
        )
    except pydantic.ValidationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if created is None:
        click.echo("Error creating recurring transaction. Please try again.", err=True)
        sys.exit(1)
    click.echo(created.message)
    click.echo(f"  ID: {created.rule.id}")
    click.echo(f"  Next due: {created.rule.next_due or '-'}")


@main.command()
@click.argument("rule_id")
@click.pass_context
def delete(ctx: click.Context, rule_id: str):
    """Delete a recurring transaction by ID."""
    app = build_context(resolve_workbook(ctx.obj["workbook"]))
    result = asyncio.run(app.service().delete_rule(rule_id))
    if not result:
        click.echo(f"Error deleting recurring transaction: {result.error}", err=True)
        sys.exit(1)
    click.echo(f"Recurring transaction {rule_id} deleted.")
