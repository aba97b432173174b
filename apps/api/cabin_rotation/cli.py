"""CLI tools for selection administration."""

import click

from cabin_rotation.core.config import settings
from cabin_rotation.core.security import create_session_token
from cabin_rotation.core.structured_logging import configure_logging
from cabin_rotation.db.enums import AllocationModelName, Role
from cabin_rotation.db.session import SessionLocal
from cabin_rotation.services import org_service, selection_service
from cabin_rotation.services.selection_errors import SelectionServiceError


def _require_org(db, slug: str):
    org = org_service.get_org_by_slug(db, slug)
    if not org:
        click.echo(f"❌ Organization not found: {slug}")
        raise SystemExit(1)
    return org


def _echo_turn(state) -> None:
    click.echo(f"  Year: {state.rotation_year} ({state.allocation_model})")
    click.echo(f"  Phase: {state.phase.value}")
    click.echo(f"  Active group: {state.active_group_id or '-'}")
    click.echo(f"  Version: {state.version}")
    if state.turn_deadline:
        click.echo(f"  Turn deadline: {state.turn_deadline.isoformat()}")


@click.group()
def cli():
    """Cabin rotation CLI tools."""
    configure_logging("WARNING")


@cli.command()
@click.option("--name", required=True, help="Organization name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
@click.option(
    "--allocation-model",
    type=click.Choice([m.value for m in AllocationModelName]),
    default=AllocationModelName.ROTATING_SELECTION.value,
    show_default=True,
)
def create_org(name: str, slug: str, allocation_model: str):
    """
    Create an organization.

    Example:
        python -m cabin_rotation.cli create-org --name "Lake House" --slug "lake-house"
    """
    db = SessionLocal()
    try:
        slug = slug.lower().strip()
        if not slug.replace("-", "").replace("_", "").isalnum():
            click.echo("❌ Slug must be alphanumeric (with optional hyphens/underscores)")
            raise SystemExit(1)
        if org_service.get_org_by_slug(db, slug):
            click.echo(f"❌ Organization with slug '{slug}' already exists")
            raise SystemExit(1)

        org = org_service.create_org(db, name=name, slug=slug)
        org.allocation_model = allocation_model
        db.commit()

        click.echo(f"✓ Created organization: {name}")
        click.echo(f"  ID: {org.id}")
        click.echo(f"  Slug: {slug}")
    finally:
        db.close()


@cli.command("add-family-group")
@click.option("--org-slug", required=True, help="Organization slug")
@click.option("--name", required=True, help="Family group name")
@click.option("--lead-email", default=None, help="Email of the group lead")
def add_family_group(org_slug: str, name: str, lead_email: str | None):
    """Add a family group to an organization."""
    db = SessionLocal()
    try:
        org = _require_org(db, org_slug)
        group = org_service.create_family_group(db, org.id, name, lead_email=lead_email)
        db.commit()
        click.echo(f"✓ Created family group: {name}")
        click.echo(f"  ID: {group.id}")
    except SelectionServiceError as e:
        db.rollback()
        click.echo(f"❌ {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--org-slug", required=True, help="Organization slug")
@click.option("--year", required=True, type=int, help="Rotation year")
@click.option(
    "--order",
    default=None,
    help="Comma-separated family group ids; omit to derive from the previous year",
)
def start_rotation_year(org_slug: str, year: int, order: str | None):
    """
    Start selection for a rotation year.

    Example:
        python -m cabin_rotation.cli start-rotation-year --org-slug lake-house --year 2026
    """
    db = SessionLocal()
    try:
        org = _require_org(db, org_slug)
        parsed = [item.strip() for item in order.split(",") if item.strip()] if order else None
        state = selection_service.start_rotation_year(db, org.id, year, parsed)
        click.echo(f"✓ Started rotation year {year}")
        _echo_turn(state)
    except SelectionServiceError as e:
        click.echo(f"❌ {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--org-slug", required=True, help="Organization slug")
@click.option("--year", required=True, type=int, help="Rotation year")
def show_turn(org_slug: str, year: int):
    """Print the current turn state of a rotation year."""
    db = SessionLocal()
    try:
        org = _require_org(db, org_slug)
        state = selection_service.get_turn_state(db, org.id, year)
        _echo_turn(state)
    except SelectionServiceError as e:
        click.echo(f"❌ {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--org-slug", required=True, help="Organization slug")
@click.option("--year", required=True, type=int, help="Rotation year")
def advance_turn(org_slug: str, year: int):
    """
    Skip the current selector.

    Reads the current version itself and retries once if another request
    moved the turn in between.
    """
    db = SessionLocal()
    try:
        org = _require_org(db, org_slug)

        def advance():
            current = selection_service.get_turn_state(db, org.id, year)
            return selection_service.advance_turn(db, org.id, year, current.version)

        state = selection_service.run_with_stale_retry(db, advance)
        click.echo(f"✓ Advanced turn for {year}")
        _echo_turn(state)
    except SelectionServiceError as e:
        click.echo(f"❌ {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--org-slug", required=True, help="Organization slug")
@click.option("--year", required=True, type=int, help="Rotation year")
@click.option("--yes", is_flag=True, help="Confirm the reset")
def reset_ledger(org_slug: str, year: int, yes: bool):
    """Zero every usage counter of a rotation year (destructive)."""
    if not yes:
        click.echo("❌ Refusing to reset without --yes")
        raise SystemExit(1)
    db = SessionLocal()
    try:
        org = _require_org(db, org_slug)
        count = selection_service.reset_ledger(db, org.id, year)
        click.echo(f"✓ Reset {count} usage rows for {year}")
    except SelectionServiceError as e:
        click.echo(f"❌ {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--org-slug", required=True, help="Organization slug")
@click.option("--model", "model_name", required=True, help="Allocation model name")
@click.option("--reason", default=None, help="Why the model changes (kept in the audit log)")
def set_allocation_model(org_slug: str, model_name: str, reason: str | None):
    """Switch an organization's allocation model."""
    db = SessionLocal()
    try:
        org = _require_org(db, org_slug)
        old_model = org.allocation_model
        org_service.set_allocation_model(db, org, model_name, reason=reason)
        db.commit()
        click.echo(f"✓ Allocation model: {old_model} → {org.allocation_model}")
    except SelectionServiceError as e:
        db.rollback()
        click.echo(f"❌ {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--org-slug", required=True, help="Organization slug")
@click.option("--user-id", required=True, type=click.UUID, help="User id (sub claim)")
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role]),
    default=Role.MEMBER.value,
    show_default=True,
)
@click.option("--family-group-id", type=click.UUID, default=None)
def issue_dev_token(org_slug: str, user_id, role: str, family_group_id):
    """Mint a session token for local development (dev environment only)."""
    if not settings.is_dev:
        click.echo("❌ Dev tokens can only be issued with ENV=dev")
        raise SystemExit(1)
    db = SessionLocal()
    try:
        org = _require_org(db, org_slug)
        click.echo(create_session_token(user_id, org.id, role, family_group_id))
    finally:
        db.close()


if __name__ == "__main__":
    cli()
