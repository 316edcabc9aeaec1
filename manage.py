import asyncio

import click


def run_with_logging(coroutine_factory, job_name: str):
    """Run a coroutine with logging configured and connections closed afterwards.

    Parameters
    ----------
    coroutine_factory: Callable[[], Awaitable]
        Builds the coroutine to run once logging is set up.
    job_name: str
        Name recorded in the log context.

    Returns
    -------
    Any
        Result of the coroutine.
    """
    from config.database import close_database_engine
    from core.infrastructure.factory import close_redis_service
    from core.infrastructure.logging import RequestContextLogger, setup_logging

    setup_logging()

    async def runner():
        try:
            async with RequestContextLogger(job=job_name):
                return await coroutine_factory()
        finally:
            await close_redis_service()
            await close_database_engine()

    return asyncio.run(runner())


@click.group()
def cli():
    """Management command interface for the notification service.

    Provides subcommands for the server, the database schema, the periodic
    notification jobs and project maintenance.
    """
    pass


@cli.command()
def runserver():
    """Start a FastAPI server instance.

    Uses `runpy` to execute the `main.py` module as a script.
    """
    import runpy

    runpy.run_module("main", run_name="__main__")


@cli.command()
def initdb():
    """Create missing database tables."""
    from config.database import create_tables

    run_with_logging(create_tables, "initdb")
    click.echo("Database tables created")


@cli.command()
@click.option(
    "--only",
    type=click.Choice(["stock", "expiry", "all"]),
    default="all",
    show_default=True,
    help="Which scan to run",
)
def scan(only):
    """Run the stock and/or expiry scans once and print their reports."""
    from config.base import get_settings
    from notifications.infrastructure.scheduler import (
        run_expiry_scan,
        run_scans,
        run_stock_scan,
    )

    settings = get_settings()
    if not settings.alert_recipient_ids:
        raise click.UsageError("Set ALERT_RECIPIENT_IDS to choose who receives scan alerts")

    jobs = {
        "stock": lambda: run_stock_scan(settings),
        "expiry": lambda: run_expiry_scan(settings),
        "all": lambda: run_scans(settings),
    }
    reports = run_with_logging(jobs[only], f"{only}_scan")
    for report in reports if isinstance(reports, list) else [reports]:
        click.echo(
            f"{report.scan}: examined={report.examined} dispatched={report.dispatched} "
            f"deduplicated={report.deduplicated} failed={report.failed}"
        )


@cli.command()
@click.option(
    "--period",
    type=click.Choice(["daily", "weekly"]),
    default="daily",
    show_default=True,
    help="Which sales report to send",
)
def report(period):
    """Send the sales report of the last complete day or week."""
    from config.base import get_settings
    from notifications.domain.entities import NotificationKind
    from notifications.infrastructure.scheduler import run_sales_report

    settings = get_settings()
    if not settings.alert_recipient_ids:
        raise click.UsageError("Set ALERT_RECIPIENT_IDS to choose who receives sales reports")

    kind = NotificationKind(f"{period}_report")
    result = run_with_logging(lambda: run_sales_report(settings, kind), kind.value)
    click.echo(
        f"{result.scan}: dispatched={result.dispatched} "
        f"deduplicated={result.deduplicated} failed={result.failed}"
    )


@cli.command()
@click.option(
    "--days",
    type=click.IntRange(min=1),
    default=None,
    help="Retention in days, defaults to NOTIFICATION_RETENTION_DAYS",
)
def purge(days):
    """Delete notifications older than the retention window."""
    from config.base import get_settings
    from notifications.infrastructure.scheduler import run_purge

    settings = get_settings()
    if days is not None:
        settings = settings.model_copy(update={"notification_retention_days": days})

    purged = run_with_logging(lambda: run_purge(settings), "purge")
    click.echo(f"Purged {purged} notification(s)")


@cli.command()
def clean():
    """Remove Python cache and build artifacts.

    Recursively removes __pycache__ directories, .pyc files,
    and pytest/Ruff cache directories.
    """
    import os
    import shutil

    cache_dirs = {"__pycache__", ".ruff_cache", ".pytest_cache"}
    for root, dirs, files in os.walk("."):
        for dir_name in dirs:
            if dir_name in cache_dirs:
                shutil.rmtree(os.path.join(root, dir_name))
        for file_name in files:
            if file_name.endswith(".pyc"):
                os.remove(os.path.join(root, file_name))

    click.echo("Cleaned Python, pytest and Ruff cache directories.")


if __name__ == "__main__":
    cli()
