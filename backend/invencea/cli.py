# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/invencea/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Bootstrap:
# - python -m flask db upgrade
#   Apply schema migrations.
# - python -m flask branches init
#   Create the ACEIS, ECEIS and CPEIS branches (idempotent).
# - python -m flask users seed
#   Create one admin and one kiosk per branch with the default password (skips existing emails).
#
# User inspection/bootstrap:
# - python -m flask users list [--branch ACEIS]
#   List users with role and branch.
# - python -m flask users create --email admin@aceis.local --password "Password123!" --role admin --branch ACEIS --full-name "ACEIS Admin"
#   Create a user (prompts if options are omitted).
#
# Maintenance:
# - python -m flask sessions purge-expired
#   Delete expired active-session rows.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, User
from .roles import BranchCode, Role
from .services import branch_service, session_service
from .services.auth_service import create_user, get_user_by_email, PasswordValidationError


DEFAULT_PASSWORD = "Password123!"


@click.group('branches')
def branches_group():
    """Branch bootstrap commands."""


@branches_group.command('init')
@with_appcontext
def init_branches():
    """Create any missing ACEIS / ECEIS / CPEIS branch rows."""
    created = branch_service.ensure_default_branches()
    for branch in created:
        click.echo(f"PASS Created branch {branch.code} (ID: {branch.id})")
    if not created:
        click.echo("PASS All branches already exist")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address (login id)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([r.value for r in Role]), prompt=True, help='Role')
@click.option('--branch', 'branch_code', type=click.Choice(list(BranchCode.ALL), case_sensitive=False), prompt=True, help='Branch code')
@click.option('--full-name', prompt=True, help='Display name')
@with_appcontext
def create_user_cli(email, password, role, branch_code, full_name):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(
            email=email,
            password=password,
            role=role,
            branch_code=branch_code,
            full_name=full_name,
        )
        click.echo(f"PASS Created user: {user.full_name} ({user.email}) with role '{user.role}'")
        click.echo(f"     Branch: {user.branch.code} (ID: {user.branch_id})")
        click.echo("SECURITY Password securely hashed with bcrypt")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('seed')
@with_appcontext
def seed_users():
    """
    Create one admin and one kiosk account per branch.

    Emails: <branch>_admin@invencea.local, kiosk_<branch>@invencea.local
    Password: Password123!

    SECURITY: Change passwords immediately in production!
    """
    branch_service.ensure_default_branches()

    for code in BranchCode.ALL:
        for role, email in (
            (Role.ADMIN, f"{code.lower()}_admin@invencea.local"),
            (Role.KIOSK, f"kiosk_{code.lower()}@invencea.local"),
        ):
            if get_user_by_email(email):
                click.echo(f"SKIP Existing user: {email}")
                continue
            create_user(
                email=email,
                password=DEFAULT_PASSWORD,
                role=role.value,
                branch_code=code,
                full_name=f"{code} {role.value.title()}",
            )
            click.echo(f"PASS Created {role.value}: {email}")

    click.echo(f"\nAll seeded accounts use the password: {DEFAULT_PASSWORD}")


@users_group.command('list')
@click.option('--branch', 'branch_code', help='Filter by branch code')
@with_appcontext
def list_users(branch_code):
    """List all users with their role and branch."""
    query = db.session.query(User).outerjoin(Branch, User.branch_id == Branch.id)

    if branch_code:
        query = query.filter(Branch.code == branch_code.strip().upper())

    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Branch':<8} {'Role':<9} {'Email':<36} {'Name'}")
    click.echo("="*90)

    for user in users:
        branch = user.branch.code if user.branch else "-"
        click.echo(f"{user.id:<5} {branch:<8} {user.role:<9} {user.email:<36} {user.full_name or ''}")

    click.echo("="*90 + "\n")


@click.group('sessions')
def sessions_group():
    """Active session maintenance."""


@sessions_group.command('purge-expired')
@with_appcontext
def purge_expired_sessions():
    """Delete every expired active-session row."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"PASS Deleted {deleted} expired session(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(branches_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sessions_group)
