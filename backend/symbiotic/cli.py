# Overview: Flask CLI command groups for bootstrap, account setup, and payout operations.

# backend/symbiotic/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migration-managed databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Accounts:
# - python -m flask users create --username alice --email alice@example.com --password "Password123!" --role buyer
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask sellers create --user-id 2 --business-name "Solar Co"
#   Attach a seller profile to a user (buyers are promoted to sellers).
# - python -m flask sellers link-account --seller-id 1 --stripe-account-id acct_123
#   Record a completed Stripe Connect onboarding so the seller can request payouts.
# - python -m flask products create --seller-id 1 --name "Panel" --price-cents 1000 --stock 5
#   Add a catalogue product.
#
# Payout operations (external transfer collaborator):
# - python -m flask payouts list [--status pending]
# - python -m flask payouts mark-processing 7
# - python -m flask payouts mark-paid 7
# - python -m flask payouts mark-failed 7 --reason "Bank rejected transfer"
#   A failed payout releases its orders for a later payout.

import click
from flask.cli import with_appcontext

from .errors import MarketplaceError
from .extensions import db
from .models import Product, User
from .models.auth import VALID_ROLES
from .services import payout_service
from .services.auth_service import (
    PasswordValidationError,
    create_seller_profile,
    create_user,
    link_payout_account,
)


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet (idempotent)."""
    db.create_all()
    click.echo("PASS Database tables created")


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

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@click.option('--name', default=None, help='Display name')
@with_appcontext
def create_user_cli(username, email, password, role, name):
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
        user = create_user(username=username, email=email, password=password, role=role, name=name)
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
        click.echo(f"     User ID: {user.id}")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<8} {'Active':<8} {'Seller'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        seller_str = str(user.seller_profile.id) if user.seller_profile else "-"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<8} {active_str:<8} {seller_str}")

    click.echo("="*90 + "\n")


@click.group('sellers')
def sellers_group():
    """Seller account commands."""


@sellers_group.command('create')
@click.option('--user-id', type=int, required=True, help='User ID')
@click.option('--business-name', required=True, help='Business name')
@click.option('--business-type', default='individual', show_default=True, help='Business type')
@with_appcontext
def create_seller_cli(user_id, business_name, business_type):
    """Attach a seller profile to an existing user."""
    try:
        profile = create_seller_profile(user_id, business_name, business_type)
        click.echo(f"PASS Created seller profile {profile.id} for user {user_id}")
    except ValueError as e:
        click.echo(f"FAIL {str(e)}")


@sellers_group.command('link-account')
@click.option('--seller-id', type=int, required=True, help='Seller profile ID')
@click.option('--stripe-account-id', required=True, help='Connected account ID (acct_...)')
@click.option('--incomplete', is_flag=True, help='Record the account without completed onboarding')
@with_appcontext
def link_account_cli(seller_id, stripe_account_id, incomplete):
    """Record the seller's payout account."""
    try:
        profile = link_payout_account(seller_id, stripe_account_id, onboarding_complete=not incomplete)
        state = "ready for payouts" if profile.can_receive_payouts else "onboarding incomplete"
        click.echo(f"PASS Seller {profile.id} linked to {stripe_account_id} ({state})")
    except ValueError as e:
        click.echo(f"FAIL {str(e)}")


@click.group('products')
def products_group():
    """Catalogue commands."""


@products_group.command('create')
@click.option('--seller-id', type=int, required=True, help='Seller profile ID')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', type=click.IntRange(min=0), required=True, help='Unit price in cents')
@click.option('--stock', type=click.IntRange(min=0), default=0, show_default=True, help='Units in stock')
@click.option('--currency', default='usd', show_default=True, help='Currency code')
@click.option('--category', default='general', show_default=True, help='Category (energy, general)')
@with_appcontext
def create_product_cli(seller_id, name, price_cents, stock, currency, category):
    """Add a product to a seller's catalogue."""
    product = Product(
        seller_id=seller_id,
        name=name,
        price_cents=price_cents,
        stock=stock,
        currency=currency.lower(),
        category=category,
    )
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product {product.id}: {name} ({price_cents} {currency.lower()}, stock {stock})")


@click.group('payouts')
def payouts_group():
    """Payout inspection and transfer lifecycle commands."""


@payouts_group.command('list')
@click.option('--status', type=click.Choice(list(payout_service.VALID_PAYOUT_STATUSES)), help='Filter by status')
@with_appcontext
def list_payouts_cli(status):
    """List payouts, oldest first."""
    payouts = payout_service.list_all_payouts(status=status)

    if not payouts:
        click.echo("No payouts found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Seller':<8} {'Amount':<12} {'Cur':<5} {'Status':<12} {'Scheduled':<22} {'Orders'}")
    click.echo("="*90)

    for payout in payouts:
        data = payout.to_dict()
        orders_str = ",".join(str(o) for o in data["orders_included"])
        click.echo(
            f"{payout.id:<5} {payout.seller_id:<8} {payout.amount_cents:<12} {payout.currency:<5} "
            f"{payout.status:<12} {data['scheduled_date']:<22} {orders_str}"
        )

    click.echo("="*90 + "\n")


def _run_transition(func, *args):
    try:
        payout = func(*args)
        click.echo(f"PASS Payout {payout.id} is now {payout.status}")
    except MarketplaceError as e:
        click.echo(f"FAIL {e.message or e.error}")


@payouts_group.command('mark-processing')
@click.argument('payout_id', type=int)
@with_appcontext
def mark_processing_cli(payout_id):
    _run_transition(payout_service.mark_payout_processing, payout_id)


@payouts_group.command('mark-paid')
@click.argument('payout_id', type=int)
@with_appcontext
def mark_paid_cli(payout_id):
    _run_transition(payout_service.mark_payout_paid, payout_id)


@payouts_group.command('mark-failed')
@click.argument('payout_id', type=int)
@click.option('--reason', default=None, help='Failure reason')
@with_appcontext
def mark_failed_cli(payout_id, reason):
    """Fail a payout; its orders become eligible again."""
    _run_transition(payout_service.mark_payout_failed, payout_id, reason)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sellers_group)
    app.cli.add_command(products_group)
    app.cli.add_command(payouts_group)
