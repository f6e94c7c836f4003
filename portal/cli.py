# portal/cli.py
from __future__ import annotations

import shutil

import click
from flask.cli import with_appcontext

from portal.errors import CandlepinError, parse_display_message
from portal.extensions import db
from portal.models import Organization, User
from portal.services.manifests import create_scratch_file, fetch_import_history


# ======================================================
# Basic CLI sanity
# ======================================================
@click.command("ping-cli")
def ping_cli():
    """Verify custom CLI commands are registered."""
    click.echo("CLI OK: commands are registered.")


# ======================================================
# Organizations + users
# ======================================================
@click.command("org-create")
@click.argument("label")
@click.argument("name")
@click.option("--cp-key", default=None, help="Candlepin owner key (defaults to LABEL).")
@with_appcontext
def org_create(label: str, name: str, cp_key: str | None):
    """Create an organization with its Red Hat provider and Library environment."""
    if Organization.query.filter_by(label=label).first():
        raise click.ClickException(f"Organization '{label}' already exists.")
    org = Organization.create(label, name, cp_key=cp_key)
    db.session.commit()
    click.echo(f"Created organization id={org.id} label={org.label}")


@click.command("user-create")
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", type=click.Choice(["admin", "manifest_manager", "reader"]), default="reader", show_default=True)
@click.option("--org", "org_label", default=None, help="Default organization label.")
@click.option("--superadmin", is_flag=True, help="Grant access to every organization.")
@with_appcontext
def user_create(email: str, password: str, role: str, org_label: str | None, superadmin: bool):
    """Create a portal user."""
    email = email.strip().lower()
    if User.query.filter_by(email=email).first():
        raise click.ClickException(f"User '{email}' already exists.")

    org = None
    if org_label:
        org = _org_or_fail(org_label)

    user = User(email=email, role=role, is_superadmin=superadmin, organization_id=org.id if org else None)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    click.echo(f"Created user id={user.id} email={user.email} role={user.role}")


def _org_or_fail(label: str) -> Organization:
    org = Organization.query.filter_by(label=label).first()
    if not org:
        raise click.ClickException(f"Organization '{label}' not found.")
    return org


def _provider_or_fail(label: str):
    provider = _org_or_fail(label).redhat_provider
    if provider is None:
        raise click.ClickException(f"Organization '{label}' has no Red Hat provider.")
    return provider


# ======================================================
# Subscription tools
# ======================================================
@click.group()
def subscriptions():
    """Subscription manifest tools (import/reindex/history)."""


@subscriptions.command("reindex")
@click.argument("org_label")
@with_appcontext
def reindex(org_label: str):
    """Re-read all pools from Candlepin into the search index."""
    provider = _provider_or_fail(org_label)
    try:
        pools = provider.index_subscriptions()
    except CandlepinError as e:
        raise click.ClickException(f"Reindex failed: {parse_display_message(e.response) or e}")
    click.echo(f"Indexed {len(pools)} subscriptions for {org_label}.")


@subscriptions.command("import")
@click.argument("org_label")
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.option("--force", is_flag=True, help="Override version/ownership conflicts.")
@with_appcontext
def import_manifest(org_label: str, manifest: str, force: bool):
    """Import a manifest synchronously (the source file is left untouched)."""
    provider = _provider_or_fail(org_label)

    with open(manifest, "rb") as fh:
        temp_path = create_scratch_file("import", fh)

    task = provider.import_manifest(temp_path, force=force, asynchronous=False, notify=False)
    db.session.refresh(task)

    if task.state != task.FINISHED:
        errors = (task.result or {}).get("errors") or []
        raise click.ClickException("Import failed: " + ("; ".join(errors) or "unknown error"))
    click.echo(f"Manifest imported for {org_label} (task {task.uuid}).")


@subscriptions.command("history")
@click.argument("org_label")
@with_appcontext
def history(org_label: str):
    """Print the Candlepin import history."""
    provider = _provider_or_fail(org_label)
    result = fetch_import_history(provider, quiet=False)
    if not result.ok:
        raise click.ClickException(
            f"Unable to retrieve history: {parse_display_message(getattr(result.error, 'response', None)) or result.error}"
        )

    if not result.statuses:
        click.echo("No imports found.")
        return

    width = shutil.get_terminal_size((100, 20)).columns
    for s in result.statuses:
        line = f"{s.get('created', '-')}  {s.get('status', '-'):<14} {s.get('statusMessage') or ''}"
        click.echo(line[:width])


# ======================================================
# Init hook
# ======================================================
def init_app(app):
    app.cli.add_command(ping_cli)
    app.cli.add_command(org_create)
    app.cli.add_command(user_create)
    app.cli.add_command(subscriptions)
