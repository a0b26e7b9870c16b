# Overview: Flask CLI command groups for bootstrap, staff accounts and stock inspection.

# backend/pharmacy_pos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (development; production uses flask db upgrade).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Idempotent demo data: admin/staff users, units, a product and one received purchase order.
#
# Staff accounts:
# - python -m flask staff create --username thu --full-name "Nguyen Thu" --password "Secret123" --role STAFF
#   Create a staff account (prompts if options are omitted).
# - python -m flask staff list
#   List active staff accounts.
#
# Inventory inspection:
# - python -m flask inventory lots [--product-id 1] [--include-empty]
#   List stock lots in FEFO order.

import click
from flask.cli import with_appcontext

from .errors import PharmacyError
from .extensions import db
from .models import Category, Product, Supplier, Unit, User
from .models.auth import ROLE_ADMIN, ROLE_STAFF, VALID_ROLES
from .services import catalog_service, code_service, inventory_service, purchase_service, staff_service
from .time_utils import to_iso_date


DEFAULT_PASSWORD = "Password123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' for demo data.")


def _ensure_user(username: str, full_name: str, role: str) -> User:
    user = db.session.query(User).filter_by(username=username).first()
    if user:
        click.echo(f"PASS Using existing user: {username}")
        return user
    user = staff_service.create_staff(
        username=username,
        password=DEFAULT_PASSWORD,
        full_name=full_name,
        role=role,
    )
    click.echo(f"PASS Created user: {username} ({role})")
    return user


def _ensure_named(model, create, name: str):
    obj = db.session.query(model).filter_by(name=name).first()
    return obj or create(name)


@system_group.command('seed')
@with_appcontext
def seed():
    """
    Idempotent demo data.

    Creates:
    - Users: admin (ADMIN), staff (STAFF); password "Password123"
    - Units: Tablet, Blister, Box
    - Category "Pain relief", supplier "Central Pharma"
    - Product PARA500 (Tablet base, Blister x10, Box x100)
    - One purchase order receiving 5 boxes, paid in full

    SECURITY: Change passwords immediately outside development!
    """
    db.create_all()
    click.echo("START Seeding demo data...")

    admin = _ensure_user("admin", "Administrator", ROLE_ADMIN)
    _ensure_user("staff", "Counter Staff", ROLE_STAFF)

    tablet = _ensure_named(Unit, catalog_service.create_unit, "Tablet")
    blister = _ensure_named(Unit, catalog_service.create_unit, "Blister")
    box = _ensure_named(Unit, catalog_service.create_unit, "Box")
    category = _ensure_named(Category, catalog_service.create_category, "Pain relief")
    supplier = _ensure_named(Supplier, catalog_service.create_supplier, "Central Pharma")

    product = db.session.query(Product).filter_by(code="PARA500").first()
    if product:
        click.echo("PASS Using existing product: PARA500")
        return

    product = catalog_service.create_product(
        code="PARA500",
        name="Paracetamol 500mg",
        category_id=category.id,
        units=[
            {"unit_id": tablet.id, "is_base_unit": True, "cost_price": 300, "selling_price": 500},
            {"unit_id": blister.id, "conversion_factor": 10, "cost_price": 2800, "selling_price": 4500},
            {"unit_id": box.id, "conversion_factor": 100, "cost_price": 26000, "selling_price": 42000},
        ],
    )
    click.echo(f"PASS Created product: {product.code} ({product.name})")

    box_unit = next(pu for pu in product.units if pu.unit_id == box.id)
    order = purchase_service.create_purchase_order(
        code=code_service.next_purchase_order_code(),
        supplier_id=supplier.id,
        user_id=admin.id,
        payment_method="TRANSFER",
        payment_status="PAID",
        items=[{
            "product_id": product.id,
            "product_unit_id": box_unit.id,
            "quantity": 5,
            "cost_price": box_unit.cost_price,
            "batch_number": "PA2401",
            "expiry_date": "2027-12-31",
        }],
    )
    click.echo(f"PASS Received purchase order {order.code} (total {order.total_amount})")
    click.echo(f"PASS On hand: {inventory_service.total_quantity(product.id):g} tablets")


@click.group('staff')
def staff_group():
    """Staff account commands."""


@staff_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(VALID_ROLES), default=ROLE_STAFF, show_default=True, help='Role')
@click.option('--email', default=None, help='Email address')
@click.option('--phone', default=None, help='Phone number')
@with_appcontext
def create_staff_cli(username, full_name, password, role, email, phone):
    """
    Create a staff account.

    Password: 8+ characters with at least one letter and one digit.
    """
    try:
        user = staff_service.create_staff(
            username=username,
            password=password,
            full_name=full_name,
            role=role,
            email=email,
            phone=phone,
        )
    except PharmacyError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@staff_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated accounts')
@with_appcontext
def list_staff_cli(include_inactive):
    users = staff_service.list_staff(include_inactive=include_inactive)
    if not users:
        click.echo("No staff accounts found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<6} {status:<8} {user.full_name}")


@click.group('inventory')
def inventory_group():
    """Stock inspection commands."""


@inventory_group.command('lots')
@click.option('--product-id', type=int, default=None, help='Only lots of this product')
@click.option('--include-empty', is_flag=True, help='Include lots at zero quantity')
@with_appcontext
def list_lots_cli(product_id, include_empty):
    """List stock lots, earliest expiry first."""
    lots = inventory_service.list_lots(product_id=product_id, include_empty=include_empty)
    if not lots:
        click.echo("No lots found.")
        return

    click.echo(f"{'LOT':>5}  {'PRODUCT':<24} {'UNIT':<10} {'BATCH':<12} {'EXPIRY':<10} {'QTY':>8}")
    for lot in lots:
        unit_name = lot.product_unit.unit.name if lot.product_unit and lot.product_unit.unit else "?"
        click.echo(
            f"{lot.id:>5}  {lot.product.name[:24]:<24} {unit_name[:10]:<10} "
            f"{(lot.batch_number or '-')[:12]:<12} {to_iso_date(lot.expiry_date) or '-':<10} {lot.quantity:>8}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(staff_group)
    app.cli.add_command(inventory_group)
