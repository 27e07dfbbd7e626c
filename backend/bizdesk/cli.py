# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/bizdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username an --full-name "Nguyen Van An" --role employee
#   Prompts for anything omitted.
#
# Stock and contacts:
# - python -m flask stock recompute-aggregates
#   Rebuild customer/agent order totals from active orders.
#
# Sessions:
# - python -m flask sessions cleanup --older-than-days 30

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Product
from .services.auth_service import ensure_default_admin, hash_password, PasswordValidationError
from .services.contact_service import recompute_aggregates
from .services.session_service import cleanup_expired_sessions


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create all tables and the default admin account.

    Safe to re-run: existing tables and admins are left alone.
    """
    click.echo("START Initializing BizDesk...")
    db.create_all()
    click.echo("PASS Tables ready")

    admin = ensure_default_admin()
    if admin:
        click.echo(f"PASS Created default admin: {admin.username}")
        click.echo("WARN  Change the default admin password immediately")
    else:
        click.echo("PASS Admin account already exists, skipping...")

    click.echo(f"\nStock policy: {current_app.config['STOCK_POLICY']}")
    click.echo(f"Report timezone: {current_app.config['REPORT_TIMEZONE']}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'flask system init' to create the admin.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with role and active status."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Full name':<30} {'Role':<10} {'Active'}")
    click.echo("="*80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.full_name:<30} {user.role:<10} {active_str}")
    click.echo("="*80 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--full-name', prompt=True, help='Display name')
@click.option('--email', default='', help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(['admin', 'employee']), default='employee', show_default=True)
@with_appcontext
def create_user_cli(username, full_name, email, password, role):
    """Create a user account."""
    existing = db.session.query(User).filter(db.func.lower(User.username) == username.lower()).first()
    if existing:
        click.echo(f"FAIL User '{username}' already exists")
        return

    try:
        user = User(
            username=username,
            full_name=full_name,
            email=email or None,
            password_hash=hash_password(password),
            role=role,
            is_active=True,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        return

    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {username} with role '{role}' (ID: {user.id})")


@click.group('stock')
def stock_group():
    """Stock and aggregate maintenance."""


@stock_group.command('recompute-aggregates')
@with_appcontext
def recompute_aggregates_cli():
    """Rebuild customer and agent totals from active orders."""
    counts = recompute_aggregates()
    click.echo(f"PASS Recomputed {counts['customers']} customers and {counts['agents']} agents")


@stock_group.command('negative')
@with_appcontext
def negative_stock_cli():
    """List products whose stock is below zero."""
    products = db.session.query(Product).filter(Product.stock_quantity < 0).order_by(Product.code).all()
    if not products:
        click.echo("No products with negative stock.")
        return
    for p in products:
        click.echo(f"{p.code:<20} {p.name:<40} {p.stock_quantity}")


@click.group('sessions')
def sessions_group():
    """Session maintenance."""


@sessions_group.command('cleanup')
@click.option('--older-than-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(older_than_days):
    """Delete expired or revoked sessions past the retention window."""
    deleted = cleanup_expired_sessions(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} sessions older than {older_than_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(sessions_group)
