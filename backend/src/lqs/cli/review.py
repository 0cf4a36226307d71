"""CLI commands for the manual review queue.

Usage:
    lqs review list --agency ID [--limit N]
    lqs review show CASE_ID
    lqs review resolve CASE_ID DECISION [--reviewer NAME]
    lqs review stats --agency ID
"""

import asyncio
import sys
from uuid import UUID

import click

from ..db import close_db
from ..exceptions import LQSError
from ..models.results import ReviewCaseView
from ..resolution import ManualReviewQueue


def _run(coro_fn):
    async def _wrapped():
        try:
            return await coro_fn(ManualReviewQueue())
        finally:
            await close_db()

    try:
        return asyncio.run(_wrapped())
    except LQSError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _parse_case_id(case_id: str) -> UUID:
    try:
        return UUID(case_id)
    except ValueError:
        click.echo(f"Invalid case ID: {case_id}", err=True)
        sys.exit(1)


def echo_case(case: ReviewCaseView, verbose: bool = False) -> None:
    click.echo(f"\nCase: {case.id}")
    click.echo("  Reason: ", nl=False)
    click.secho(case.reason, fg="yellow")
    click.echo(f"  Sale: {case.sale_first_name or ''} {case.sale_last_name or ''}".rstrip())
    if case.sale_policy_number:
        click.echo(f"  Policy: {case.sale_policy_number}")
    if case.sale_premium_cents is not None:
        click.echo(f"  Premium: ${case.sale_premium_cents / 100:,.2f}")
    click.echo(f"  Issued: {case.sale_issued_date}")
    click.echo(f"  Candidates ({len(case.candidates)}):")
    for candidate in case.candidates:
        click.echo(f"    {candidate.household_key} score={candidate.score} id={candidate.household_id}")
        if verbose:
            click.echo(f"      reasons: {', '.join(candidate.reasons) or '-'}")
    if case.resolution:
        click.echo(f"  Resolved: {case.resolution} by {case.resolved_by or 'unknown'}")


@click.group(name="review")
def cli():
    """Manual review commands."""
    pass


@cli.command(name="list")
@click.option("--agency", required=True, help="Agency ID")
@click.option("--limit", type=int, default=None, help="Maximum cases to show")
@click.option("--verbose", "-v", is_flag=True, help="Show scoring reasons")
def list_cases(agency: str, limit: int | None, verbose: bool):
    """List pending review cases, oldest first.

    Example:

        lqs review list --agency a1 --verbose
    """
    cases = _run(lambda queue: queue.list_pending(agency, limit=limit))

    if not cases:
        click.echo("No pending cases.")
        return

    click.echo(f"\nPending Review Cases ({len(cases)} found)")
    click.echo("=" * 70)
    for case in cases:
        echo_case(case, verbose)
    click.echo("\n" + "=" * 70)
    click.echo("Use 'lqs review resolve <case_id> <household_id|new>' to resolve")


@cli.command(name="show")
@click.argument("case_id")
def show_case(case_id: str):
    """Show one review case."""
    parsed = _parse_case_id(case_id)
    case = _run(lambda queue: queue.get_case(parsed))
    echo_case(case, verbose=True)


@cli.command(name="resolve")
@click.argument("case_id")
@click.argument("decision")
@click.option("--reviewer", default="cli-user", help="Reviewer username")
def resolve_case(case_id: str, decision: str, reviewer: str):
    """Resolve a case to a household ID or to "new".

    Examples:

        lqs review resolve 6f1c... 0b7e...

        lqs review resolve 6f1c... new --reviewer analyst1
    """
    parsed = _parse_case_id(case_id)
    outcome = _run(lambda queue: queue.resolve(parsed, decision, resolved_by=reviewer))

    click.echo("\nCase resolved successfully!")
    click.echo(f"  Case ID: {outcome.case_id}")
    click.echo(f"  Sale ID: {outcome.sale_id}")
    click.echo(f"  Household: {outcome.household_id}")
    click.echo("  Outcome: ", nl=False)
    click.secho(str(outcome.outcome), fg="green")


@cli.command(name="stats")
@click.option("--agency", required=True, help="Agency ID")
def queue_stats(agency: str):
    """Show review queue statistics for an agency."""
    stats = _run(lambda queue: queue.stats(agency))

    click.echo(f"\nReview Queue ({agency})")
    click.echo(f"  Pending: {stats['pending']}")
    click.echo(f"  Resolved: {stats['resolved']}")
    for reason, counts in sorted(stats["by_reason"].items()):
        click.echo(f"  {reason}: {counts['pending']} pending, {counts['resolved']} resolved")
