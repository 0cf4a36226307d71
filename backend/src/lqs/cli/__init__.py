"""CLI entry points for LQS.

Provides command-line tools for:
- Database setup
- Batch ingestion of leads, quotes and sales
- Manual review of flagged sales
"""

import click

from .. import __version__
from ..config import get_settings
from .db import cli as db_cli
from .ingest import cli as ingest_cli
from .review import cli as review_cli


@click.group()
@click.version_option(version=__version__, prog_name="lqs")
def main():
    """LQS - Lead-Quote-Sale household matching engine.

    Command-line tools for ingesting agency feeds and
    reviewing sales the engine would not link on its own.
    """
    pass


@main.command(name="serve")
@click.option("--host", default=None, help="Bind address (default: API_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: API_PORT)")
def serve(host: str | None, port: int | None):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "lqs.app:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
    )


main.add_command(db_cli, name="db")
main.add_command(ingest_cli, name="ingest")
main.add_command(review_cli, name="review")


if __name__ == "__main__":
    main()
