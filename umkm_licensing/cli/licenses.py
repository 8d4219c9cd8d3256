"""CLI commands for license application operations."""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import click
from tabulate import tabulate

from umkm_licensing.dependencies import LicensingServices, build_default_services
from umkm_licensing.errors import LicensingError
from umkm_licensing.observability.logging import init_logging
from umkm_licensing.settings import settings


def _services(ctx: click.Context) -> LicensingServices:
    if ctx.obj is None:
        init_logging(settings.LOG_LEVEL)
        ctx.obj = build_default_services(settings)
    return ctx.obj


def _run(coro):
    try:
        return asyncio.run(coro)
    except LicensingError as e:
        raise click.ClickException(f"{e.code}: {e.message}") from e


def _fmt(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _days(value: Optional[float]) -> str:
    return f"{value:.1f}" if value is not None else "-"


@click.group()
def licenses():
    """License application management commands."""
    pass


@licenses.command("init-db")
def init_db():
    """Create database tables that do not exist yet."""
    from umkm_licensing.storage.db import close_database, create_schema

    async def run():
        try:
            await create_schema()
        finally:
            await close_database()

    _run(run())
    click.echo("✅ Database schema is up to date")


@licenses.command()
@click.option('--user-id', help='Restrict to one applicant')
@click.pass_context
def stats(ctx: click.Context, user_id: Optional[str]):
    """Show application statistics."""
    services = _services(ctx)
    result = _run(services.statistics.get_statistics(user_id))

    scope = f"user {user_id}" if user_id else "all applicants"
    click.echo(f"Statistics for {scope}")

    rows = [
        ["Total", result.total],
        ["Draft", result.draft],
        ["Submitted", result.submitted],
        ["Processing", result.processing],
        ["Pending documents", result.pending_documents],
        ["Approved", result.approved],
        ["Rejected", result.rejected],
        ["Avg processing days", _days(result.avg_processing_days)],
    ]
    click.echo(tabulate(rows, headers=["Metric", "Value"], tablefmt="grid"))

    if result.by_type:
        rows = [
            [license_type, count, _days(result.avg_processing_days_by_type.get(license_type))]
            for license_type, count in sorted(result.by_type.items())
        ]
        click.echo("\n" + tabulate(
            rows, headers=["License type", "Count", "Avg processing days"], tablefmt="grid"
        ))


@licenses.command()
@click.argument('application_id')
@click.pass_context
def history(ctx: click.Context, application_id: str):
    """Show the status history of an application."""
    services = _services(ctx)
    entries = _run(services.engine.get_history(application_id))

    if not entries:
        click.echo(f"No history recorded for application {application_id}")
        return

    table_data = [
        [
            _fmt(entry.changed_at),
            entry.from_status.value if entry.from_status else "-",
            entry.to_status.value,
            entry.changed_by,
            entry.notes or "",
        ]
        for entry in entries
    ]
    headers = ["Changed at", "From", "To", "By", "Notes"]
    click.echo(tabulate(table_data, headers=headers, tablefmt="grid"))


@licenses.command()
@click.argument('reviewer_ids', nargs=-1, required=True)
@click.pass_context
def workload(ctx: click.Context, reviewer_ids: tuple):
    """Show active application counts per reviewer."""
    services = _services(ctx)
    counts = _run(services.statistics.reviewer_workloads(reviewer_ids))
    limit = services.assignment.max_workload

    table_data = [
        [reviewer_id, count, limit, "⚠️" if count >= limit else "✅"]
        for reviewer_id, count in counts.items()
    ]
    click.echo(tabulate(table_data, headers=["Reviewer", "Active", "Limit", ""], tablefmt="grid"))


@licenses.command("expire-due")
@click.option('--now', 'now', type=click.DateTime(), help='Cut-off time in UTC (defaults to now)')
@click.pass_context
def expire_due(ctx: click.Context, now: Optional[datetime]):
    """Expire approved licenses whose expiry date has passed."""
    services = _services(ctx)
    cutoff = now.replace(tzinfo=timezone.utc) if now else None
    expired = _run(services.engine.expire_due(cutoff))

    if not expired:
        click.echo("No licenses due for expiry")
        return

    click.echo(f"✅ Expired {len(expired)} license(s)")
    table_data = [
        [app.id, app.license_number or "-", app.license_type.value, _fmt(app.expiry_date)]
        for app in expired
    ]
    headers = ["Application", "License number", "Type", "Expired on"]
    click.echo("\n" + tabulate(table_data, headers=headers, tablefmt="grid"))


if __name__ == "__main__":
    licenses()
