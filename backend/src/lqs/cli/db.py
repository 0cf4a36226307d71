"""CLI commands for database setup.

Usage:
    lqs db init
    lqs db check
"""

import asyncio
import sys

import click

from ..db import close_db, init_db, verify_storage
from ..exceptions import StorageError


@click.group(name="db")
def cli():
    """Database commands."""
    pass


@cli.command(name="init")
def init_command():
    """Create the LQS tables if they do not exist."""

    async def _init():
        try:
            await init_db()
            await verify_storage()
        finally:
            await close_db()

    try:
        asyncio.run(_init())
    except StorageError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.secho("Database initialized.", fg="green")


@cli.command(name="check")
def check_command():
    """Verify the database is reachable and the schema is in place."""

    async def _check():
        try:
            await verify_storage()
        finally:
            await close_db()

    try:
        asyncio.run(_check())
    except StorageError as e:
        click.secho(f"Storage check failed: {e}", fg="red", err=True)
        sys.exit(1)

    click.secho("Storage OK.", fg="green")
