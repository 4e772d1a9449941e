# Overview: Flask CLI command groups for bootstrap, sample data, user inspection and maintenance.

# backend/invoicing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--username admin] [--password "Admin123!"]
#   Idempotent bootstrap: creates all tables and the admin account.
# - python -m flask system seed
#   Sample data: a regular user, a client, three products and one product group.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role, active status and permission flags.
# - python -m flask users create --username ana --password "secret1" --role user
#   Create a user (prompts if options are omitted).
#
# Maintenance:
# - python -m flask maintenance cleanup-logs --days 90
#   Delete activity log entries older than the retention window.
# - python -m flask maintenance cleanup-sessions --older-than-days 30
#   Delete expired or revoked session tokens.

import click
from datetime import date
from flask import current_app
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .models import Client, Product, ProductGroup, User
from .permissions import Permission, permission_map
from .services import (
    activity_service,
    auth_service,
    client_service,
    lot_service,
    product_service,
    session_service,
)
from .services.auth_service import PasswordValidationError


SEED_USER_PERMISSIONS = {perm.value: perm is not Permission.EDIT_USER for perm in Permission}

SAMPLE_CLIENT = {
    "name": "Sample Client",
    "legal_name": "Sample Client LLC",
    "mb": "12345678",
    "pib": "987654321",
    "address": "123 Sample Street, Sample City",
    "contact_person": "John Doe",
}

SAMPLE_PRODUCTS = [
    {"code": "PROD001", "name": "Sample Product 1", "price_cents": 10000, "weight": 500, "category": "Sample Category"},
    {"code": "PROD002", "name": "Sample Product 2", "price_cents": 15000, "weight": 750, "category": "Sample Category"},
    {"code": "PROD003", "name": "Sample Product 3", "price_cents": 20000, "weight": 1000, "category": "Sample Category"},
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--username', default='admin', show_default=True, help='Admin username')
@click.option('--password', default='Admin123!', help='Admin password')
@with_appcontext
def init_system(username, password):
    """
    Create all tables and the admin account.

    Safe to re-run: existing tables and an existing admin are left alone.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing invoicing system...")

    db.create_all()
    click.echo("PASS Tables created")

    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        click.echo(f"WARN  User '{username}' already exists, skipping...")
    else:
        try:
            user = auth_service.create_user(
                {"username": username, "password": password, "full_name": "Admin User", "role": "admin"},
                actor_id=None,
            )
            click.echo(f"PASS Created admin user: {user.username} (ID: {user.id})")
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{username}': {e.message}")
            return
        except ServiceError as e:
            click.echo(f"FAIL Failed to create user '{username}': {e.message}")
            return

    click.echo("\n" + "="*60)
    click.echo("DONE Invoicing System Initialized Successfully!")
    click.echo("="*60)
    click.echo("\nSECURITY WARNING:")
    click.echo("   - Change the admin password immediately in production!")
    click.echo(f"   - Passwords must be at least {auth_service.MIN_PASSWORD_LENGTH} characters")
    click.echo("")


@system_group.command('seed')
@click.option('--admin', 'admin_username', default='admin', show_default=True, help='User recorded as creator')
@with_appcontext
def seed_system(admin_username):
    """
    Load sample data for local development.

    Creates (each skipped when already present):
    - User "test" / "test123" with every flag except editUser
    - Client "Sample Client" (MB 12345678, PIB 987654321)
    - Products PROD001..PROD003 (weights 500, 750, 1000)
    - Product group "Sample Group" (10000 by weight, 500 reserved) holding PROD001 and PROD002
    """
    admin = db.session.query(User).filter_by(username=admin_username).first()
    if not admin:
        click.echo(f"FAIL Admin user '{admin_username}' not found. Run 'python -m flask system init' first.")
        return

    try:
        if db.session.query(User).filter_by(username="test").first():
            click.echo("WARN  User 'test' already exists, skipping...")
        else:
            auth_service.create_user(
                {
                    "username": "test",
                    "password": "test123",
                    "full_name": "Test User",
                    "role": "user",
                    "permissions": SEED_USER_PERMISSIONS,
                },
                actor_id=admin.id,
            )
            click.echo("PASS Created user: test")

        if db.session.query(Client).filter_by(mb=SAMPLE_CLIENT["mb"]).first():
            click.echo("WARN  Sample client already exists, skipping...")
        else:
            client_service.create_client(dict(SAMPLE_CLIENT), actor_id=admin.id)
            click.echo(f"PASS Created client: {SAMPLE_CLIENT['name']}")

        for data in SAMPLE_PRODUCTS:
            if db.session.query(Product).filter_by(code=data["code"]).first():
                click.echo(f"WARN  Product {data['code']} already exists, skipping...")
                continue
            product_service.create_product(dict(data), actor_id=admin.id)
            click.echo(f"PASS Created product: {data['code']}")

        if db.session.query(ProductGroup).filter_by(name="Sample Group").first():
            click.echo("WARN  Product group 'Sample Group' already exists, skipping...")
        else:
            lot = lot_service.create_lot(
                {
                    "name": "Sample Group",
                    "quantity_type": "weight",
                    "original_quantity": 10000,
                    "shipment_date": date.today().isoformat(),
                    "reservation_type": "weight",
                    "reservation_amount": 500,
                },
                actor_id=admin.id,
            )
            for code in ("PROD001", "PROD002"):
                product = db.session.query(Product).filter_by(code=code).one()
                lot_service.add_product(lot.id, product.id, actor_id=admin.id)
            click.echo(f"PASS Created product group: {lot.name} (current quantity {lot.current_quantity:g})")
    except ServiceError as e:
        click.echo(f"FAIL Seeding stopped: {e.message}")
        return

    click.echo("DONE Sample data loaded")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', default=None, help='Email address')
@click.option('--full-name', default=None, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(['admin', 'user']), default='user', show_default=True, help='Role')
@with_appcontext
def create_user_cli(username, email, full_name, password, role):
    """Create a user with the default flags for the role."""
    try:
        user = auth_service.create_user(
            {"username": username, "email": email, "full_name": full_name, "password": password, "role": role},
            actor_id=None,
        )
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their role and permission flags."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<7} {'Active':<8} {'Permissions'}")
    click.echo("="*100)

    for user in users:
        flags = [name for name, enabled in permission_map(user).items() if enabled]
        active_str = "Yes" if user.is_active else "No"
        click.echo(
            f"{user.id:<5} {user.username:<20} {(user.email or '-'):<30} {user.role:<7} {active_str:<8} "
            f"{', '.join(flags) or 'none'}"
        )

    click.echo("="*100 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-logs')
@click.option('--days', type=int, default=None, help='Days of history to keep (default ACTIVITY_LOG_RETENTION_DAYS)')
@with_appcontext
def cleanup_logs_cli(days):
    """
    Cleanup old activity log entries.

    Default retention: 90 days.
    """
    if days is None:
        days = current_app.config["ACTIVITY_LOG_RETENTION_DAYS"]
    try:
        deleted = activity_service.prune_older_than(days)
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"Deleted {deleted} activity log entries older than {days} days.")


@maintenance_group.command('cleanup-sessions')
@click.option('--older-than-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(older_than_days):
    """Delete expired or revoked session tokens."""
    deleted = session_service.cleanup_expired_sessions(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} sessions older than {older_than_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
