"""Seed children, homes and calendar feeds.

Usage:
    flask seed-household --child Maya --home "Dad's flat" --home "Mum's house"
    flask seed-household --child-id <id> --ics-url webcal://example.com/family.ics
    flask list-homes --all
    flask deactivate-home <home_id>
"""

from __future__ import annotations

import click
from flask.cli import with_appcontext

from homestay.domains.calendar.errors import UpstreamImportError, ValidationError
from homestay.domains.calendar.services import connect_ics_source
from homestay.domains.household.services import (
    create_child,
    create_home,
    deactivate_home,
    get_child,
    list_homes,
)


@click.command("seed-household")
@click.option("--child", "child_name", help="Create a child with this name")
@click.option("--child-id", help="Use an existing child")
@click.option("--home", "homes", multiple=True, help="Create a home (repeatable)")
@click.option("--ics-url", help="Attach a published calendar feed to the child")
@with_appcontext
def seed_household_command(child_name: str | None, child_id: str | None, homes, ics_url: str | None):
    """Create a child, homes and an ICS calendar source."""
    try:
        if child_name:
            child = create_child(child_name)
            click.echo(f"  ✓ Child {child.name} ({child.id})")
        else:
            child = get_child(child_id) if child_id else None
        for name in homes:
            home = create_home(name)
            click.echo(f"  ✓ Home {home.name} ({home.id})")
    except ValueError as e:
        raise click.BadParameter(str(e))

    if ics_url:
        if child is None:
            raise click.UsageError("--ics-url needs --child or an existing --child-id")
        try:
            source = connect_ics_source(child.id, ics_url)
        except ValidationError as e:
            raise click.BadParameter(e.detail or e.code, param_hint="--ics-url")
        except UpstreamImportError as e:
            click.echo(f"  ✗ {e.message}", err=True)
            raise SystemExit(1)
        click.echo(f"  ✓ Calendar source {source.name} ({source.id})")


@click.command("list-homes")
@click.option("--all", "include_inactive", is_flag=True, help="Include inactive homes")
@with_appcontext
def list_homes_command(include_inactive: bool):
    for home in list_homes(include_inactive=include_inactive):
        state = "" if home.is_active else " (inactive)"
        click.echo(f"{home.id}  {home.name}{state}")


@click.command("deactivate-home")
@click.argument("home_id")
@with_appcontext
def deactivate_home_command(home_id: str):
    """Stop offering a home for new mapping rules."""
    try:
        home = deactivate_home(home_id)
    except ValueError:
        raise click.BadParameter(f"unknown home {home_id}")
    click.echo(f"Deactivated {home.name}")


def register_commands(app):
    app.cli.add_command(seed_household_command)
    app.cli.add_command(list_homes_command)
    app.cli.add_command(deactivate_home_command)
