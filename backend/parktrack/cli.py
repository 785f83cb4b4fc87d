# Overview: Flask CLI command groups for bootstrap, registry seeding, rates, tokens and billing runs.

# backend/parktrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app parktrack <group> <command> [options]
#
# System bootstrap:
# - flask --app parktrack system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - flask --app parktrack system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - flask --app parktrack system seed-demo
#   Demo lot, payers (one per tier), vehicles and rate policies.
#
# Registry:
# - flask --app parktrack registry add-payer drv-001 "Ada Driver" --tier GOLD
# - flask --app parktrack registry add-vehicle ABC123 drv-001 --model "Civic"
# - flask --app parktrack registry add-lot LOT-A "Central Lot" --capacity 120
# - flask --app parktrack registry set-tier drv-001 PLATINUM
# - flask --app parktrack registry list-payers
#
# Rates:
# - flask --app parktrack rates set LOT-A NORMAL --base 1000 --cap 5000 [--gold 800]
# - flask --app parktrack rates list LOT-A [--all]
#
# Tokens:
# - flask --app parktrack tokens issue drv-001 ABC123
#   Print a fresh gate token (stand-in for the driver app).
#
# Billing:
# - flask --app parktrack invoices generate 2025 3 [--payer drv-001]
# - flask --app parktrack billing overdue-sweep
# - flask --app parktrack billing backlog [--status RESOLVED]
# - flask --app parktrack billing request-upgrade drv-001 GOLD [--by admin-1]
# - flask --app parktrack billing confirm-upgrade 1 --method CASH [--by admin-1]
#   Record the fee and activate the tier.
# - flask --app parktrack billing upgrades [--payer drv-001] [--pending]

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ParkingEngineError
from .services import (
    invoice_service,
    payment_service,
    rate_service,
    registry_service,
    session_service,
    token_service,
)
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete. Run 'flask --app parktrack system seed-demo' for demo data.")


DEMO_LOT_ID = "LOT-A"
DEMO_PAYERS = [
    ("drv-normal", "Nora Normal", "nora@example.com", registry_service.TIER_NORMAL, "NRM001"),
    ("drv-gold", "Gabe Gold", "gabe@example.com", registry_service.TIER_GOLD, "GLD001"),
    ("drv-platinum", "Pia Platinum", "pia@example.com", registry_service.TIER_PLATINUM, "PLT001"),
]
DEMO_RATES = {
    rate_service.RATE_TYPE_NORMAL: (1000, 5000),
    rate_service.RATE_TYPE_HOURLY: (1000, 5000),
    rate_service.RATE_TYPE_VIP: (1500, 8000),
    rate_service.RATE_TYPE_OVERNIGHT: (600, 3000),
}


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Idempotent demo data: one lot, one payer per tier, a vehicle each, and
    a rate policy per rate-type.
    """
    db.create_all()

    if not registry_service.get_lot(DEMO_LOT_ID):
        registry_service.register_lot(DEMO_LOT_ID, "Demo Lot", capacity=100)
        click.echo(f"PASS Created lot {DEMO_LOT_ID}")

    for payer_id, name, email, tier, plate in DEMO_PAYERS:
        if not registry_service.get_payer(payer_id):
            registry_service.register_payer(payer_id, name, email=email, tier=tier)
            click.echo(f"PASS Created payer {payer_id} ({tier})")
        if not registry_service.get_vehicle(plate):
            registry_service.register_vehicle(plate, payer_id)
            click.echo(f"PASS Registered vehicle {plate} to {payer_id}")

    existing = {p.rate_type for p in rate_service.list_rate_policies(DEMO_LOT_ID)}
    for rate_type, (base, cap) in DEMO_RATES.items():
        if rate_type in existing:
            continue
        policy = rate_service.set_rate_policy(DEMO_LOT_ID, rate_type, base, cap)
        click.echo(f"PASS Rate policy {policy.id}: {rate_type} base={base} cap={cap}")

    click.echo("PASS Demo data ready.")


# =============================================================================
# REGISTRY
# =============================================================================

@click.group('registry')
def registry_group():
    """Payer, vehicle and lot administration."""


@registry_group.command('add-payer')
@click.argument('payer_id')
@click.argument('name')
@click.option('--email', default=None)
@click.option('--tier', type=click.Choice(registry_service.VALID_TIERS, case_sensitive=False),
              default=registry_service.TIER_NORMAL, show_default=True)
@with_appcontext
def add_payer_cli(payer_id, name, email, tier):
    try:
        payer = registry_service.register_payer(payer_id, name, email=email, tier=tier)
        click.echo(f"PASS Created payer {payer.id} ({payer.tier})")
    except ParkingEngineError as e:
        click.echo(f"FAIL {e.code}: {e}")


@registry_group.command('add-vehicle')
@click.argument('vehicle_id')
@click.argument('payer_id')
@click.option('--model', default=None)
@click.option('--color', default=None)
@with_appcontext
def add_vehicle_cli(vehicle_id, payer_id, model, color):
    try:
        vehicle = registry_service.register_vehicle(vehicle_id, payer_id, model=model, color=color)
        click.echo(f"PASS Registered vehicle {vehicle.id} to {vehicle.payer_id}")
    except ParkingEngineError as e:
        click.echo(f"FAIL {e.code}: {e}")


@registry_group.command('add-lot')
@click.argument('lot_id')
@click.argument('name')
@click.option('--capacity', type=int, default=None)
@with_appcontext
def add_lot_cli(lot_id, name, capacity):
    try:
        lot = registry_service.register_lot(lot_id, name, capacity=capacity)
        click.echo(f"PASS Created lot {lot.id}")
    except ParkingEngineError as e:
        click.echo(f"FAIL {e.code}: {e}")


@registry_group.command('set-tier')
@click.argument('payer_id')
@click.argument('tier', type=click.Choice(registry_service.VALID_TIERS, case_sensitive=False))
@with_appcontext
def set_tier_cli(payer_id, tier):
    try:
        payer = registry_service.set_payer_tier(payer_id, tier)
        click.echo(f"PASS {payer.id} is now {payer.tier}")
    except ParkingEngineError as e:
        click.echo(f"FAIL {e.code}: {e}")


@registry_group.command('list-payers')
@with_appcontext
def list_payers_cli():
    payers = registry_service.list_payers()

    if not payers:
        click.echo("No payers found.")
        return

    for p in payers:
        plates = ", ".join(v.id for v in p.vehicles) or "-"
        active_str = "" if p.is_active else " (inactive)"
        click.echo(f"{p.id:<16} {p.tier:<9} {p.name:<24} {plates}{active_str}")


# =============================================================================
# RATES
# =============================================================================

@click.group('rates')
def rates_group():
    """Rate policy administration."""


@rates_group.command('set')
@click.argument('lot_id')
@click.argument('rate_type', type=click.Choice(rate_service.VALID_RATE_TYPES, case_sensitive=False))
@click.option('--base', 'base_cents', type=int, required=True, help='Base price per hour (cents)')
@click.option('--cap', 'cap_cents', type=int, required=True, help='Max price per day (cents)')
@click.option('--normal', 'normal_cents', type=int, default=0, help='NORMAL tier rate (cents, 0 = base)')
@click.option('--gold', 'gold_cents', type=int, default=0, help='GOLD tier rate (cents, 0 = base * factor)')
@click.option('--platinum', 'platinum_cents', type=int, default=0, help='PLATINUM tier rate (cents, 0 = base * factor)')
@with_appcontext
def set_rate_cli(lot_id, rate_type, base_cents, cap_cents, normal_cents, gold_cents, platinum_cents):
    """Replace the active policy for (lot, rate-type)."""
    try:
        policy = rate_service.set_rate_policy(
            lot_id,
            rate_type,
            base_cents,
            cap_cents,
            normal_rate_cents=normal_cents,
            gold_rate_cents=gold_cents,
            platinum_rate_cents=platinum_cents,
        )
        click.echo(f"PASS Rate policy {policy.id} active for {policy.lot_id}/{policy.rate_type}")
    except ParkingEngineError as e:
        click.echo(f"FAIL {e.code}: {e}")


@rates_group.command('list')
@click.argument('lot_id')
@click.option('--all', 'show_all', is_flag=True, help='Include replaced policies')
@with_appcontext
def list_rates_cli(lot_id, show_all):
    policies = rate_service.list_rate_policies(lot_id, include_inactive=show_all)

    if not policies:
        click.echo("No rate policies found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Type':<10} {'Base':>8} {'Cap':>8} {'Normal':>8} {'Gold':>8} {'Platinum':>9} {'Active':<8}")
    click.echo("="*100)

    for p in policies:
        active_str = "Yes" if p.is_active else "No"
        click.echo(f"{p.id:<5} {p.rate_type:<10} {p.base_price_per_hour_cents:>8} {p.max_daily_price_cents:>8} "
                   f"{p.normal_rate_cents:>8} {p.gold_rate_cents:>8} {p.platinum_rate_cents:>9} {active_str:<8}")

    click.echo("="*100 + "\n")


# =============================================================================
# TOKENS
# =============================================================================

@click.group('tokens')
def tokens_group():
    """Gate token utilities."""


@tokens_group.command('issue')
@click.argument('payer_id')
@click.argument('vehicle_id')
@with_appcontext
def issue_token_cli(payer_id, vehicle_id):
    """Print a gate token issued now."""
    try:
        click.echo(token_service.encode_token(payer_id, vehicle_id, utcnow()))
    except ParkingEngineError as e:
        click.echo(f"FAIL {e.code}: {e}")


# =============================================================================
# BILLING
# =============================================================================

@click.group('invoices')
def invoices_group():
    """Monthly invoice runs."""


@invoices_group.command('generate')
@click.argument('year', type=int)
@click.argument('month', type=int)
@click.option('--payer', 'payer_id', default=None, help='Only this payer')
@with_appcontext
def generate_invoices_cli(year, month, payer_id):
    try:
        if payer_id:
            invoices = [invoice_service.generate_invoice(payer_id, year, month)]
        else:
            invoices = invoice_service.generate_invoices_for_period(year, month)
    except ParkingEngineError as e:
        click.echo(f"FAIL {e.code}: {e}")
        return

    if not invoices:
        click.echo("No charges in that period.")
        return

    for inv in invoices:
        click.echo(f"PASS {inv.id}: sessions={inv.total_sessions} net={inv.net_amount_cents} "
                   f"paid={inv.amount_paid_cents} balance={inv.balance_due_cents} status={inv.payment_status}")


@click.group('billing')
def billing_group():
    """Reconciliation jobs, tier upgrades and the billing backlog."""


@billing_group.command('overdue-sweep')
@with_appcontext
def overdue_sweep_cli():
    """Mark aged unpaid charges overdue and refresh their invoices."""
    changed = payment_service.mark_overdue_charges()
    click.echo(f"Marked {len(changed)} charge(s) overdue.")


@billing_group.command('backlog')
@click.option('--status', type=click.Choice(['OPEN', 'RESOLVED']), default='OPEN', show_default=True)
@with_appcontext
def backlog_cli(status):
    """List sessions whose close could not be priced."""
    items = session_service.list_backlog_items(status=status)

    if not items:
        click.echo("No backlog items found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Session':<8} {'Payer':<16} {'Lot':<10} {'Type':<10} {'Created':<20} {'Reason'}")
    click.echo("="*100)

    for item in items:
        click.echo(f"{item.id:<5} {item.session_id:<8} {item.payer_id:<16} {item.lot_id:<10} {item.rate_type:<10} "
                   f"{str(item.created_at)[:19]:<20} {item.reason[:40]}")

    click.echo("="*100 + "\n")


@billing_group.command('request-upgrade')
@click.argument('payer_id')
@click.argument('tier', type=click.Choice(registry_service.VALID_TIERS, case_sensitive=False))
@click.option('--by', 'requested_by', default=None, help='Staff member taking the request')
@with_appcontext
def request_upgrade_cli(payer_id, tier, requested_by):
    """Record an unpaid tier upgrade; the tier changes once the fee is confirmed."""
    try:
        record = payment_service.request_tier_upgrade(payer_id, tier, requested_by=requested_by)
        click.echo(f"PASS Upgrade {record.id}: {record.payer_id} {record.from_tier} -> {record.to_tier}, "
                   f"fee {record.fee_cents} cents due")
    except ParkingEngineError as e:
        click.echo(f"FAIL {e.code}: {e}")


@billing_group.command('confirm-upgrade')
@click.argument('record_id', type=int)
@click.option('--method', type=click.Choice(payment_service.VALID_PAYMENT_METHODS, case_sensitive=False),
              default='CASH', show_default=True)
@click.option('--by', 'confirmed_by', default=None, help='Staff member confirming the fee')
@with_appcontext
def confirm_upgrade_cli(record_id, method, confirmed_by):
    try:
        record = payment_service.confirm_tier_upgrade_payment(record_id, method, confirmed_by=confirmed_by)
        click.echo(f"PASS {record.payer_id} is now {record.to_tier}")
    except ParkingEngineError as e:
        click.echo(f"FAIL {e.code}: {e}")


@billing_group.command('upgrades')
@click.option('--payer', 'payer_id', default=None)
@click.option('--pending', is_flag=True, help='Only unpaid requests')
@with_appcontext
def list_upgrades_cli(payer_id, pending):
    records = payment_service.list_tier_upgrades(payer_id=payer_id, pending_only=pending)

    if not records:
        click.echo("No tier upgrades found.")
        return

    for r in records:
        state = "PAID" if r.is_paid else "PENDING"
        click.echo(f"{r.id:<5} {r.payer_id:<16} {r.from_tier:>8} -> {r.to_tier:<9} {r.fee_cents:>8} {state}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(registry_group)
    app.cli.add_command(rates_group)
    app.cli.add_command(tokens_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(billing_group)
