# Overview: Flask CLI command groups for merchant bootstrap, order settlement and catalog sync.

# backend/marketplace/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# Business bootstrap:
# - python -m flask business create --name "Corner Shop"
#   Create a business (merchant).
# - python -m flask business list
#   List businesses.
# - python -m flask business issue-token --business-id 1 [--name "1C export"]
#   Issue an API bearer token; the plaintext is printed once.
#
# Orders:
# - python -m flask orders status 42 2
#   Append a status event (2 = READY triggers settlement).
# - python -m flask orders history 42
#   Show the status history of an order.
# - python -m flask orders recalculate 42
#   Recompute and store the order cost.
# - python -m flask orders settle 42
#   Run settlement (recalculate + capture) for an order now.
#
# Catalog:
# - python -m flask catalog sync prices.xlsx --business-id 1 [--chunk-size 500]
#   Apply a CSV/JSON/XLSX price and stock snapshot.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Business, status_name
from .services import business_auth_service, catalog_sync_service, cost_service, order_status_service
from .services.settlement_service import get_orchestrator
from .validation import NotFoundError, ValidationError


# =============================================================================
# BUSINESS COMMANDS
# =============================================================================

@click.group('business')
def business_group():
    """Merchant bootstrap commands."""


@business_group.command('create')
@click.option('--name', required=True, help='Business name')
@with_appcontext
def create_business_cli(name):
    """Create a new business."""
    try:
        business = business_auth_service.create_business(name)
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created business: {business.name} (ID: {business.id})")


@business_group.command('list')
@with_appcontext
def list_businesses():
    """List all businesses."""
    businesses = db.session.query(Business).order_by(Business.id.asc()).all()

    if not businesses:
        click.echo("No businesses found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<40} {'Active'}")
    click.echo("="*60)
    for business in businesses:
        active_str = "Yes" if business.is_active else "No"
        click.echo(f"{business.id:<5} {business.name:<40} {active_str}")
    click.echo("="*60 + "\n")


@business_group.command('issue-token')
@click.option('--business-id', type=int, required=True, help='Business ID')
@click.option('--name', help='Label for the token (e.g. integration name)')
@with_appcontext
def issue_token_cli(business_id, name):
    """Issue an API token for a business."""
    try:
        token, plaintext = business_auth_service.issue_business_token(business_id, name)
    except NotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Issued token {token.id} for business {business_id}")
    click.echo(f"Token (shown once): {plaintext}")


# =============================================================================
# ORDER COMMANDS
# =============================================================================

@click.group('orders')
def orders_group():
    """Order status and settlement commands."""


@orders_group.command('status')
@click.argument('order_id', type=int)
@click.argument('status', type=int)
@with_appcontext
def append_status_cli(order_id, status):
    """Append a status event to an order."""
    try:
        event = order_status_service.append_status(order_id, status)
    except (ValidationError, NotFoundError) as e:
        raise click.ClickException(str(e))

    current = order_status_service.get_current_status(order_id)
    click.echo(f"PASS Appended {event.status} ({status_name(event.status)}) to order {order_id}")
    click.echo(f"Current status: {current.status} ({status_name(current.status)})")


@orders_group.command('history')
@click.argument('order_id', type=int)
@with_appcontext
def history_cli(order_id):
    """Show the status history of an order."""
    try:
        order_status_service.get_order(order_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    history = order_status_service.get_status_history(order_id)
    if not history:
        click.echo("No status events.")
        return
    for event in history:
        click.echo(f"{event.log_timestamp.isoformat()}  {event.status:<3} {status_name(event.status)}")


@orders_group.command('recalculate')
@click.argument('order_id', type=int)
@with_appcontext
def recalculate_cli(order_id):
    """Recompute and store the cost of an order."""
    try:
        breakdown = cost_service.recalculate_order_cost(order_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(breakdown.to_dict(), indent=2))


@orders_group.command('settle')
@click.argument('order_id', type=int)
@with_appcontext
def settle_cli(order_id):
    """Recalculate and capture payment for an order."""
    try:
        order_status_service.get_order(order_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    outcome = get_orchestrator().settle_order(order_id)
    click.echo(json.dumps(outcome.to_dict(), indent=2))
    if outcome.outcome == "failed":
        raise click.ClickException(f"Settlement failed: {outcome.error}")


# =============================================================================
# CATALOG COMMANDS
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Catalog sync commands."""


@catalog_group.command('sync')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--business-id', type=int, required=True, help='Business ID')
@click.option('--chunk-size', type=int, help='Codes per UPDATE statement')
@with_appcontext
def sync_cli(path, business_id, chunk_size):
    """Apply a price/stock snapshot file to the catalog."""
    try:
        with open(path, 'rb') as fh:
            rows = catalog_sync_service.parse_upload(path, fh)
        result = catalog_sync_service.sync_prices(business_id, rows, chunk_size=chunk_size)
    except ValidationError as e:
        raise click.ClickException(str(e))

    click.echo(
        f"PASS received={result.received} normalized={result.normalized} "
        f"updated={result.updated} chunks={result.chunks}"
    )
    for failed in result.failed_chunks:
        click.echo(f"FAIL chunk {failed['index']}: {failed['error']} ({len(failed['codes'])} codes)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(business_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(catalog_group)
