# Overview: Flask CLI command groups for bootstrap, registers, and exchange rates.

# backend/minisuper/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, an admin and a cashier user, and register #1.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username maria --full-name "Maria Perez" --password "clave123" --role cashier
#
# Cash registers:
# - python -m flask registers list [--all]
# - python -m flask registers create --number 2 --name "Caja 2"
#
# Exchange rates:
# - python -m flask rates set --bcv 36.50 [--parallel 38.10] [--date 2026-10-19]
# - python -m flask rates refresh
#   Fetch today's BCV rate from PyDolar and store it.

import click
from decimal import Decimal
from flask import current_app
from flask.cli import with_appcontext

from .errors import POSError
from .extensions import db
from .models import CashRegister, CashSession, User
from .models.auth import ROLES, ROLE_ADMIN, ROLE_CASHIER
from .models.registers import SESSION_OPEN
from .services.auth_service import create_user, PasswordValidationError
from .services.container import build_currency, build_services
from .services.currency_service import RateFetchError
from .time_utils import local_today, parse_iso_date


def _services():
    return build_services(db.session, current_app.config, logger=current_app.logger)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-password', default='admin123', help='Password for the default admin user')
@click.option('--cashier-password', default='cajero123', help='Password for the default cashier user')
@with_appcontext
def init_system(admin_password, cashier_password):
    """
    Initialize the minisuper database.

    Creates:
    - All tables (when not managed by migrations yet)
    - Users: admin (admin role), cajero (cashier role)
    - Cash register #1 "Caja Principal"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing minisuper POS...")
    db.create_all()

    default_users = [
        ("admin", "Administrador", ROLE_ADMIN, admin_password),
        ("cajero", "Cajero Principal", ROLE_CASHIER, cashier_password),
    ]
    for username, full_name, role, password in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username=username, password=password, full_name=full_name, role=role)
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except (PasswordValidationError, ValueError) as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e}")

    if db.session.query(CashRegister).filter_by(register_number=1).first():
        click.echo("WARN  Register #1 already exists, skipping...")
    else:
        register = _services().cash_sessions.create_register(1, "Caja Principal")
        click.echo(f"PASS Created register #{register.register_number}: {register.name}")

    click.echo("DONE Minisuper POS initialized")


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
    click.echo("PASS Database reset. Run 'python -m flask system init' to seed it.")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), default=ROLE_CASHIER, show_default=True)
@click.option('--email', default=None, help='Email address')
@with_appcontext
def create_user_cli(username, full_name, password, role, email):
    """
    Create a new user.

    Password must be at least 6 characters and contain a letter and a digit.
    """
    try:
        user = create_user(username=username, password=password, full_name=full_name, role=role, email=email)
        click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
    except ValueError as e:
        click.echo(f"FAIL {e}")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with role and active status."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<15} {'Full name':<30} {'Role':<10} {'Active'}")
    click.echo("="*70)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<15} {user.full_name:<30} {user.role:<10} {active_str}")
    click.echo("="*70 + "\n")


# =============================================================================
# REGISTER MANAGEMENT COMMANDS
# =============================================================================

@click.group('registers')
def registers_group():
    """Cash register inspection and bootstrap commands."""


@registers_group.command('create')
@click.option('--number', type=int, required=True, help='Register number (unique, > 0)')
@click.option('--name', required=True, help='Register name')
@with_appcontext
def create_register_cli(number, name):
    """
    Create a new cash register.

    Example:
        flask registers create --number 2 --name "Caja 2"
    """
    try:
        register = _services().cash_sessions.create_register(number, name)
        click.echo(f"PASS Created register #{register.register_number}: {register.name} (ID: {register.id})")
    except POSError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")


@registers_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive registers too')
@with_appcontext
def list_registers_cli(show_all):
    """List cash registers with their session status."""
    registers = _services().cash_sessions.list_registers(include_inactive=show_all)
    if not registers:
        click.echo("No registers found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Number':<8} {'Name':<25} {'Active':<8} {'Status':<8} {'Cashier'}")
    click.echo("="*80)

    for register in registers:
        open_session = db.session.query(CashSession).filter_by(
            register_id=register.id,
            status=SESSION_OPEN,
        ).first()

        status = "OPEN" if open_session else "CLOSED"
        cashier = open_session.user.username if open_session else "-"
        active_str = "Yes" if register.is_active else "No"
        click.echo(f"{register.id:<5} {register.register_number:<8} {register.name:<25} {active_str:<8} {status:<8} {cashier}")

    click.echo("="*80 + "\n")


# =============================================================================
# EXCHANGE RATE COMMANDS
# =============================================================================

@click.group('rates')
def rates_group():
    """Exchange rate maintenance commands."""


@rates_group.command('set')
@click.option('--bcv', 'bcv_rate', type=Decimal, required=True, help='BCV rate (VES per USD)')
@click.option('--parallel', 'parallel_rate', type=Decimal, default=None, help='Parallel market rate')
@click.option('--date', 'rate_date', default=None, help='Rate date YYYY-MM-DD (default: today)')
@with_appcontext
def set_rate_cli(bcv_rate, parallel_rate, rate_date):
    """Store a manual exchange rate, replacing any existing rate for that day."""
    try:
        day = parse_iso_date(rate_date) or local_today()
    except ValueError:
        click.echo("FAIL --date must be YYYY-MM-DD")
        return

    currency = build_currency(db.session, current_app.config, current_app.logger)
    try:
        row = currency.set_manual_rate(day, bcv_rate, parallel_rate)
        click.echo(f"PASS Rate for {row.rate_date.isoformat()}: {row.bcv_rate} VES/USD (manual)")
    except POSError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")


@rates_group.command('refresh')
@with_appcontext
def refresh_rate_cli():
    """Fetch today's BCV rate from PyDolar."""
    currency = build_currency(db.session, current_app.config, current_app.logger)
    try:
        row = currency.refresh_rate()
        click.echo(f"PASS Rate for {row.rate_date.isoformat()}: {row.bcv_rate} VES/USD ({row.source})")
    except RateFetchError as e:
        click.echo(f"FAIL Could not fetch rate: {e}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(rates_group)
