"""CLI commands for batch ingestion.

Rows are read from a JSON file holding either a list of row objects or
an object with a "rows" list.

Usage:
    lqs ingest leads --agency ID FILE [--lead-source SOURCE]
    lqs ingest quotes --agency ID FILE
    lqs ingest sales --agency ID FILE
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click

from ..db import close_db
from ..exceptions import BatchAborted, LQSError
from ..ingestion import ingest_leads, ingest_quotes
from ..models.results import BatchResult, RowStatus
from ..resolution import ingest_sales

_STATUS_COLORS = {
    RowStatus.CREATED.value: "green",
    RowStatus.UPDATED.value: "green",
    RowStatus.MATCHED.value: "green",
    RowStatus.UNCHANGED.value: "white",
    RowStatus.FLAGGED.value: "yellow",
    RowStatus.SKIPPED_INVALID.value: "yellow",
    RowStatus.FAILED.value: "red",
    RowStatus.CANCELLED.value: "red",
}


def load_rows(path: Path) -> list[dict[str, Any]]:
    """Load batch rows from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("rows", [])
    if not isinstance(data, list):
        raise click.BadParameter(f"{path} must contain a list of rows")
    return data


def echo_batch(batch: BatchResult, as_json: bool) -> None:
    if as_json:
        payload = batch.model_dump(mode="json")
        payload["counts"] = batch.counts
        click.echo(json.dumps(payload, indent=2))
        return

    click.echo(f"\n{batch.kind.title()} batch {batch.batch_id} ({batch.status})")
    click.echo("=" * 70)
    for result in batch.results:
        status = str(result.status)
        click.echo(f"  [{result.row_index}] ", nl=False)
        click.secho(status, fg=_STATUS_COLORS.get(status, "white"), nl=False)
        click.echo(f" - {result.reason}" if result.reason else "")
        for warning in result.warnings:
            click.secho(f"      warning: {warning}", fg="yellow")
    click.echo("=" * 70)
    summary = ", ".join(f"{count} {status}" for status, count in sorted(batch.counts.items()))
    click.echo(f"{len(batch.results)} rows: {summary or 'none'}")


def _run(kind: str, agency: str, file: Path, as_json: bool, concurrency: int | None, **extra: Any):
    entry_points = {
        "leads": ingest_leads,
        "quotes": ingest_quotes,
        "sales": ingest_sales,
    }
    rows = load_rows(file)

    async def _ingest():
        try:
            return await entry_points[kind](
                agency, rows, max_concurrency=concurrency, **extra
            )
        finally:
            await close_db()

    try:
        batch = asyncio.run(_ingest())
    except BatchAborted as e:
        click.secho(f"Batch aborted: {e.message}", fg="red", err=True)
        click.echo(
            f"  {e.summary['processed_rows']} rows processed, "
            f"{e.unprocessed} not processed",
            err=True,
        )
        sys.exit(2)
    except LQSError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    echo_batch(batch, as_json)


@click.group(name="ingest")
def cli():
    """Batch ingestion commands."""
    pass


def _common(func):
    func = click.option("--json", "as_json", is_flag=True, help="Print the audit trail as JSON")(func)
    func = click.option(
        "--concurrency", type=int, default=None, help="Rows processed at once"
    )(func)
    func = click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))(func)
    func = click.option("--agency", required=True, help="Agency ID")(func)
    return func


@cli.command(name="leads")
@_common
@click.option("--lead-source", default=None, help="Lead source for rows without one")
def leads_command(agency: str, file: Path, concurrency: int | None, as_json: bool, lead_source: str | None):
    """Ingest a lead file.

    Example:

        lqs ingest leads --agency a1 leads.json --lead-source "Web Form"
    """
    _run("leads", agency, file, as_json, concurrency, lead_source=lead_source)


@cli.command(name="quotes")
@_common
def quotes_command(agency: str, file: Path, concurrency: int | None, as_json: bool):
    """Ingest a quote file."""
    _run("quotes", agency, file, as_json, concurrency)


@cli.command(name="sales")
@_common
def sales_command(agency: str, file: Path, concurrency: int | None, as_json: bool):
    """Ingest a sales file and resolve every sale."""
    _run("sales", agency, file, as_json, concurrency)
