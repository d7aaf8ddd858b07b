"""Operator CLI for keygate."""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from src.core.scopes import RESOURCE_WILDCARD_SCOPES, WILDCARD_SCOPE, all_scopes


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
    )
    # Quiet noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


async def _prune_usage(days: int | None) -> None:
    from src.core.config import get_settings
    from src.core.database import close_database, get_session_factory, init_database
    from src.services.usage_service import UsageService

    settings = get_settings()
    init_database(settings)
    factory = get_session_factory()

    try:
        async with factory() as session:
            result = await UsageService(session, settings=settings).prune(days)
            await session.commit()
        click.echo(f"Deleted {result.deleted} usage log(s) older than {result.cutoff:%Y-%m-%d %H:%M} UTC")
    finally:
        await close_database()


@click.group()
def cli() -> None:
    """Keygate operator commands."""
    _setup_logging()


@cli.command("prune-usage")
@click.option(
    "--days",
    type=click.IntRange(min=1),
    default=None,
    help="Delete logs older than this many days (default: USAGE_RETENTION_DAYS)",
)
def prune_usage(days: int | None) -> None:
    """Delete old API key usage logs."""
    asyncio.run(_prune_usage(days))


@cli.command()
def scopes() -> None:
    """Print the permission scope catalogue."""
    for scope in sorted(all_scopes()):
        if scope == WILDCARD_SCOPE:
            note = "  (all scopes)"
        elif scope in RESOURCE_WILDCARD_SCOPES:
            note = "  (all actions on resource)"
        else:
            note = ""
        click.echo(f"{scope}{note}")


if __name__ == "__main__":
    cli()
