# Overview: Flask CLI command groups for bootstrap, provisioning, policy inspection and session housekeeping.

# backend/authcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "authcore:create_app".
# - Use: python -m flask <group> <command> [options]
#
# Bootstrap:
# - python -m flask authcore init-db
#   Create all tables (idempotent). Use migrations for existing databases.
#
# Tenancy:
# - python -m flask retailers list
# - python -m flask retailers create --name "Acme Pharmacy" --code "ACME"
# - python -m flask retailers add-location --retailer-id 1 --name "Downtown" --code "DT"
#
# Principals:
# - python -m flask principals create --email owner@example.com --role owner
#   Prompts for the password. Retailer/location roles need --retailer-id / --location-id.
# - python -m flask principals list
#
# Policy inspection:
# - python -m flask policy check retailer api/customers/1 --action read
#   Prints ALLOW or DENY.
# - python -m flask policy explain retailer api/admin/audit-events --action read
#   Prints the governing rule and the basis of the decision.
# - python -m flask policy rules
#
# Session housekeeping:
# - python -m flask sessions sweep
#   Mark timed-out sessions terminal and prune lapsed throttle rows.
# - python -m flask sessions revoke-all --principal-id 7 --reason compromised
#   Revoke every live session of one principal.

import json

import click
from flask.cli import with_appcontext

from .core import get_core
from .errors import PasswordValidationError, ScopeInvariantError
from .extensions import db
from .models import AuthSession, Location, Principal, Retailer
from .permissions import ALL_ACTIONS, ALL_ROLES, Decision
from .services.scope_service import system_scope


@click.group('authcore')
def authcore_group():
    """Database bootstrap commands."""


@authcore_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that don't exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


# =============================================================================
# TENANCY COMMANDS
# =============================================================================

@click.group('retailers')
def retailers_group():
    """Retailer and location management commands."""


@retailers_group.command('list')
@with_appcontext
def list_retailers():
    """List all retailers with their locations."""
    retailers = db.session.query(Retailer).order_by(Retailer.id.asc()).all()
    if not retailers:
        click.echo("No retailers found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Locations'}")
    click.echo("="*70)
    for retailer in retailers:
        location_count = db.session.query(Location).filter_by(retailer_id=retailer.id).count()
        active_str = "Yes" if retailer.is_active else "No"
        click.echo(f"{retailer.id:<5} {retailer.name:<30} {retailer.code:<15} {active_str:<8} {location_count}")
    click.echo("="*70 + "\n")


@retailers_group.command('create')
@click.option('--name', required=True, help='Retailer name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_retailer(name, code):
    """Create a retailer (tenant)."""
    if db.session.query(Retailer).filter_by(code=code).first():
        click.echo(f"FAIL Retailer with code '{code}' already exists")
        return

    retailer = Retailer(name=name, code=code, is_active=True)
    db.session.add(retailer)
    db.session.commit()
    click.echo(f"PASS Created retailer: {retailer.name} (ID: {retailer.id}, Code: {retailer.code})")


@retailers_group.command('add-location')
@click.option('--retailer-id', type=int, required=True, help='Retailer ID')
@click.option('--name', required=True, help='Location name')
@click.option('--code', required=True, help='Location code (unique within retailer)')
@with_appcontext
def add_location(retailer_id, name, code):
    """Add a location to a retailer."""
    retailer = db.session.get(Retailer, retailer_id)
    if retailer is None:
        click.echo(f"FAIL Retailer ID {retailer_id} not found")
        return

    location = Location(retailer_id=retailer.id, name=name, code=code)
    db.session.add(location)
    db.session.commit()
    click.echo(f"PASS Created location: {location.name} (ID: {location.id}, Retailer: {retailer.name})")


# =============================================================================
# PRINCIPAL COMMANDS
# =============================================================================

@click.group('principals')
def principals_group():
    """Principal provisioning commands."""


@principals_group.command('create')
@click.option('--email', required=True, help='Login email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', required=True, type=click.Choice(ALL_ROLES), help='Role')
@click.option('--retailer-id', type=int, default=None, help='Retailer ID (retailer, location_user)')
@click.option('--location-id', type=int, default=None, help='Location ID (location_user)')
@with_appcontext
def create_principal(email, password, role, retailer_id, location_id):
    """
    Provision a principal outside any request.

    Runs with no acting principal, so any role may be created. This is how
    the first owner account comes to exist.
    """
    core = get_core()
    try:
        with system_scope():
            principal = core.create_principal(
                email=email,
                password=password,
                role=role,
                retailer_id=retailer_id,
                location_id=location_id,
            )
    except (PasswordValidationError, ScopeInvariantError, ValueError) as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created principal: {principal.email} (ID: {principal.id}, Role: {principal.role})")


@principals_group.command('list')
@with_appcontext
def list_principals():
    """List all principals with role, scope and status."""
    principals = db.session.query(Principal).order_by(Principal.id.asc()).all()
    if not principals:
        click.echo("No principals found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Email':<35} {'Role':<15} {'Retailer':<10} {'Location':<10} {'Status'}")
    click.echo("="*90)
    for p in principals:
        click.echo(
            f"{p.id:<5} {p.email:<35} {p.role:<15} {p.retailer_id or '-':<10} {p.location_id or '-':<10} {p.status}"
        )
    click.echo("="*90 + "\n")


# =============================================================================
# POLICY COMMANDS
# =============================================================================

@click.group('policy')
def policy_group():
    """Policy inspection commands."""


@policy_group.command('check')
@click.argument('role', type=click.Choice(ALL_ROLES))
@click.argument('resource_path')
@click.option('--action', type=click.Choice(sorted(ALL_ACTIONS)), default=None, help='Data action')
@with_appcontext
def policy_check(role, resource_path, action):
    """Print ALLOW or DENY for (role, path, action)."""
    decision = get_core().policy.resolve(role, resource_path, action)
    click.echo("ALLOW" if decision == Decision.ALLOW else "DENY")


@policy_group.command('explain')
@click.argument('role', type=click.Choice(ALL_ROLES))
@click.argument('resource_path')
@click.option('--action', type=click.Choice(sorted(ALL_ACTIONS)), default=None, help='Data action')
@with_appcontext
def policy_explain(role, resource_path, action):
    """Show the governing rule and how the decision was reached."""
    click.echo(json.dumps(get_core().policy.explain(role, resource_path, action), indent=2))


@policy_group.command('rules')
@with_appcontext
def policy_rules():
    """List the loaded rule table in registration order."""
    for rule in get_core().policy.rules:
        actions = ",".join(sorted(rule.actions)) if rule.actions is not None else "*"
        click.echo(f"{rule.pattern:<45} {actions:<30} {','.join(sorted(rule.allowed_roles))}")


# =============================================================================
# SESSION COMMANDS
# =============================================================================

@click.group('sessions')
def sessions_group():
    """Session housekeeping commands."""


@sessions_group.command('sweep')
@with_appcontext
def sweep_sessions():
    """Mark timed-out sessions terminal and prune lapsed throttle rows."""
    result = get_core().sessions.sweep()
    click.echo(
        f"PASS Expired {result['expired']} session(s) past expiry, {result['idle']} idle; "
        f"pruned {result['rate_limits_pruned']} throttle row(s)"
    )


@sessions_group.command('revoke-all')
@click.option('--principal-id', type=int, required=True, help='Principal ID')
@click.option('--reason', default='admin_revocation', help='Revocation reason')
@with_appcontext
def revoke_all_sessions(principal_id, reason):
    """Revoke every live session of one principal."""
    if db.session.get(Principal, principal_id) is None:
        click.echo(f"FAIL Principal ID {principal_id} not found")
        return

    revoked = get_core().sessions.revoke_all(principal_id, reason)
    click.echo(f"PASS Revoked {revoked} session(s) for principal {principal_id}")


@sessions_group.command('list')
@click.option('--principal-id', type=int, default=None, help='Filter by principal')
@click.option('--limit', type=int, default=20, help='Max rows')
@with_appcontext
def list_sessions(principal_id, limit):
    """List recent sessions with their state."""
    query = db.session.query(AuthSession)
    if principal_id is not None:
        query = query.filter_by(principal_id=principal_id)
    for session in query.order_by(AuthSession.created_at.desc()).limit(limit).all():
        click.echo(f"{session.id}  principal={session.principal_id:<5} {session.state:<20} expires={session.expires_at}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(authcore_group)
    app.cli.add_command(retailers_group)
    app.cli.add_command(principals_group)
    app.cli.add_command(policy_group)
    app.cli.add_command(sessions_group)
