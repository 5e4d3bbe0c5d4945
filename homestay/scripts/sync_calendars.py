"""CLI commands for calendar sync and outbox delivery.

Usage:
    flask sync-calendars                  # Sync every active source
    flask sync-calendars --child <id>     # Sync sources bound to one child
    flask sync-calendars --source <id>    # Sync one source
    flask dispatch-outbox --limit 100
"""

from __future__ import annotations

import click
from flask.cli import with_appcontext


@click.command("sync-calendars")
@click.option("--source", "-s", "source_id", help="Sync one calendar source only")
@click.option("--child", "-c", "child_id", help="Sync sources of one child only")
@with_appcontext
def sync_calendars_command(source_id: str | None, child_id: str | None):
    """Import calendar sources and relabel their events."""
    from homestay.domains.calendar.errors import HomeStayError
    from homestay.domains.calendar.tasks import sync_all_calendars, sync_calendar_source

    if source_id:
        click.echo(f"Syncing calendar source {source_id}...")
        try:
            stats = sync_calendar_source(source_id)
        except HomeStayError as e:
            click.echo(f"  ✗ {e}", err=True)
            raise SystemExit(1)
        if stats["not_modified"]:
            click.echo("  ✓ Not modified")
        else:
            click.echo(
                f"  ✓ Created {stats['created']}, Updated {stats['updated']}, "
                f"Deleted {stats['deleted']}, Relabeled {stats['relabeled']}"
            )
        return

    click.echo("Syncing all active calendar sources...")
    stats = sync_all_calendars(child_id=child_id)
    click.echo(
        f"  ✓ {stats['synced_sources']} sources | "
        f"Created: {stats['created']}, Updated: {stats['updated']}, "
        f"Deleted: {stats['deleted']}, Relabeled: {stats['relabeled']}, Errors: {stats['errors']}"
    )
    for failed_id, message in stats["failures"].items():
        click.echo(f"  ✗ {failed_id}: {message}", err=True)


@click.command("dispatch-outbox")
@click.option("--limit", "-l", type=int, default=50, show_default=True, help="Maximum messages to send")
@with_appcontext
def dispatch_outbox_command(limit: int):
    """Publish pending outbox messages."""
    from homestay.domains.calendar.tasks import dispatch_outbox

    sent = dispatch_outbox(limit=limit)
    click.echo(f"Dispatched {sent} outbox messages")


def register_commands(app):
    """Register CLI commands with the app."""
    app.cli.add_command(sync_calendars_command)
    app.cli.add_command(dispatch_outbox_command)
