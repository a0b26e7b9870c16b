# Overview: Service-layer operations for catalog master data; products, units, suppliers and storage.

"""
Catalog Service

Master data the engines read: products and their units of measure,
suppliers, categories, usage routes and storage locations.

Product unit rules:
- Every product has exactly one base unit with conversion_factor == 1.
- Every other unit's factor is > 0 and states base units per that unit.
- A unit referenced by stock lots, invoice lines or purchase lines cannot be
  removed; neither can the base unit.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import DuplicateCodeError, NotFoundError, ValidationError
from ..models import (
    Cabinet,
    Category,
    Compartment,
    InventoryItem,
    InvoiceItem,
    Product,
    ProductUnit,
    PurchaseOrderItem,
    ShelfRow,
    Supplier,
    Unit,
    UsageRoute,
)
from ..validation import non_negative_int, optional_text, positive_float, positive_int, required_text
from .concurrency import run_atomic


def _get_or_404(model, entity_id, label: str):
    obj = db.session.get(model, entity_id)
    if obj is None:
        raise NotFoundError(f"{label} {entity_id} not found", {f"{label.lower().replace(' ', '_')}_id": entity_id})
    return obj


def _create_named(model, label: str, name, description=None):
    name = required_text("name", name)
    existing = db.session.query(model).filter(model.name == name).first()
    if existing is not None:
        raise ValidationError(f"{label} {name!r} already exists", {"field": "name"})
    obj = model(name=name, description=optional_text("description", description, 2000))
    db.session.add(obj)
    db.session.commit()
    return obj


# =============================================================================
# LOOKUP TABLES
# =============================================================================

def create_category(name, description=None) -> Category:
    return _create_named(Category, "Category", name, description)


def create_usage_route(name, description=None) -> UsageRoute:
    return _create_named(UsageRoute, "Usage route", name, description)


def create_unit(name, description=None) -> Unit:
    return _create_named(Unit, "Unit", name, description)


def list_units() -> list[Unit]:
    return db.session.query(Unit).order_by(Unit.name.asc()).all()


# =============================================================================
# STORAGE LOCATIONS
# =============================================================================

def create_cabinet(name, description=None) -> Cabinet:
    cabinet = Cabinet(name=required_text("name", name), description=optional_text("description", description, 2000))
    db.session.add(cabinet)
    db.session.commit()
    return cabinet


def add_shelf_row(cabinet_id: int, name) -> ShelfRow:
    cabinet = _get_or_404(Cabinet, cabinet_id, "Cabinet")
    row = ShelfRow(cabinet_id=cabinet.id, name=required_text("name", name))
    db.session.add(row)
    db.session.commit()
    return row


def add_compartment(row_id: int, name) -> Compartment:
    row = _get_or_404(ShelfRow, row_id, "Shelf row")
    compartment = Compartment(row_id=row.id, name=required_text("name", name))
    db.session.add(compartment)
    db.session.commit()
    return compartment


def assign_location(product_id: int, compartment_id: int | None) -> Product:
    """Place a product in a compartment, or clear its location with None."""
    def _op() -> Product:
        product = _get_or_404(Product, product_id, "Product")
        if compartment_id is not None:
            _get_or_404(Compartment, compartment_id, "Compartment")
        product.compartment_id = compartment_id
        return product

    return run_atomic(_op)


# =============================================================================
# PRODUCTS & UNITS
# =============================================================================

def _parse_unit(data: dict, index: int | None = None) -> dict:
    try:
        unit_id = positive_int("unit_id", data.get("unit_id"))
        is_base = bool(data.get("is_base_unit", False))
        factor = 1.0 if is_base else positive_float("conversion_factor", data.get("conversion_factor"))
        if is_base and data.get("conversion_factor") not in (None, 1, 1.0):
            raise ValidationError("Base unit conversion_factor must be 1", {"field": "conversion_factor"})
        return {
            "unit_id": unit_id,
            "conversion_factor": factor,
            "cost_price": non_negative_int("cost_price", data.get("cost_price", 0)),
            "selling_price": non_negative_int("selling_price", data.get("selling_price", 0)),
            "is_base_unit": is_base,
        }
    except ValidationError as exc:
        if index is not None:
            exc.details["index"] = index
        raise


def create_product(
    *,
    code,
    name,
    category_id,
    units,
    usage_route_id=None,
    compartment_id=None,
    description=None,
) -> Product:
    """
    Create a product together with its units.

    Exactly one entry in units must have is_base_unit=True.
    """
    code = required_text("code", code, 64)
    name = required_text("name", name)
    if not units:
        raise ValidationError("Product must have at least one unit", {"field": "units"})
    parsed = [_parse_unit(u, i) for i, u in enumerate(units)]

    base_count = sum(1 for u in parsed if u["is_base_unit"])
    if base_count != 1:
        raise ValidationError("Product must have exactly one base unit", {"field": "units", "base_units": base_count})
    unit_ids = [u["unit_id"] for u in parsed]
    if len(set(unit_ids)) != len(unit_ids):
        raise ValidationError("Each unit may appear only once per product", {"field": "units"})

    _get_or_404(Category, category_id, "Category")
    if usage_route_id is not None:
        _get_or_404(UsageRoute, usage_route_id, "Usage route")
    if compartment_id is not None:
        _get_or_404(Compartment, compartment_id, "Compartment")
    for unit_id in unit_ids:
        _get_or_404(Unit, unit_id, "Unit")

    if db.session.query(Product.id).filter(Product.code == code).first() is not None:
        raise DuplicateCodeError(f"Product code {code} already exists", {"code": code})

    product = Product(
        code=code,
        name=name,
        category_id=category_id,
        usage_route_id=usage_route_id,
        compartment_id=compartment_id,
        description=optional_text("description", description, 2000),
    )
    product.units = [ProductUnit(**u) for u in parsed]
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateCodeError(f"Product code {code} already exists", {"code": code})
    return product


PRODUCT_MUTABLE_FIELDS = {"name", "description", "category_id", "usage_route_id", "is_active"}


def update_product(product_id: int, patch: dict) -> Product:
    """Apply a partial update; an invalid field leaves the product unchanged."""
    def _op() -> Product:
        product = _get_or_404(Product, product_id, "Product")
        for key, value in patch.items():
            if key not in PRODUCT_MUTABLE_FIELDS:
                continue
            if key == "name":
                value = required_text("name", value)
            elif key == "category_id":
                _get_or_404(Category, value, "Category")
            elif key == "usage_route_id" and value is not None:
                _get_or_404(UsageRoute, value, "Usage route")
            elif key == "is_active":
                value = bool(value)
            setattr(product, key, value)
        return product

    return run_atomic(_op)


def add_product_unit(product_id: int, data: dict) -> ProductUnit:
    """Add a non-base unit; use set_base_unit to change the base."""
    product = _get_or_404(Product, product_id, "Product")
    parsed = _parse_unit(data)
    if parsed["is_base_unit"]:
        raise ValidationError("Use set_base_unit to change the base unit", {"field": "is_base_unit"})
    _get_or_404(Unit, parsed["unit_id"], "Unit")
    if any(pu.unit_id == parsed["unit_id"] for pu in product.units):
        raise ValidationError("Unit already defined for this product", {"field": "unit_id"})

    product_unit = ProductUnit(product_id=product.id, **parsed)
    db.session.add(product_unit)
    db.session.commit()
    return product_unit


def set_base_unit(product_id: int, product_unit_id: int) -> Product:
    """
    Make another unit the base and rescale every factor against it.

    A box of 10 blisters of 10 tablets rebased from tablet to blister goes
    from factors (1, 10, 100) to (0.1, 1, 10).
    """
    def _op() -> Product:
        product = _get_or_404(Product, product_id, "Product")
        target = next((pu for pu in product.units if pu.id == product_unit_id), None)
        if target is None:
            raise NotFoundError(
                f"Product unit {product_unit_id} not found on product {product.code}",
                {"product_id": product_id, "product_unit_id": product_unit_id},
            )
        if target.is_base_unit:
            return product

        scale = target.conversion_factor
        for pu in product.units:
            pu.conversion_factor = pu.conversion_factor / scale
            pu.is_base_unit = False
        target.conversion_factor = 1.0
        target.is_base_unit = True
        return product

    return run_atomic(_op)


def _unit_in_use(product_unit_id: int) -> bool:
    for model in (InventoryItem, InvoiceItem, PurchaseOrderItem):
        if db.session.query(model.id).filter(model.product_unit_id == product_unit_id).first() is not None:
            return True
    return False


def remove_product_unit(product_id: int, product_unit_id: int) -> None:
    product = _get_or_404(Product, product_id, "Product")
    product_unit = next((pu for pu in product.units if pu.id == product_unit_id), None)
    if product_unit is None:
        raise NotFoundError(
            f"Product unit {product_unit_id} not found on product {product.code}",
            {"product_id": product_id, "product_unit_id": product_unit_id},
        )
    if product_unit.is_base_unit:
        raise ValidationError("The base unit cannot be removed", {"product_unit_id": product_unit_id})
    if _unit_in_use(product_unit_id):
        raise ValidationError(
            "Unit is referenced by stock or documents and cannot be removed",
            {"product_unit_id": product_unit_id},
        )
    product.units.remove(product_unit)
    db.session.commit()


def get_product(product_id: int) -> Product:
    return _get_or_404(Product, product_id, "Product")


def list_products(*, include_inactive: bool = False, category_id: int | None = None) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    return q.order_by(Product.name.asc()).all()


# =============================================================================
# SUPPLIERS
# =============================================================================

SUPPLIER_FIELDS = ("contact_person", "phone", "email", "address", "tax_code")


def create_supplier(name, **fields) -> Supplier:
    supplier = Supplier(name=required_text("name", name))
    for key in SUPPLIER_FIELDS:
        setattr(supplier, key, optional_text(key, fields.get(key), 2000 if key == "address" else 255))
    db.session.add(supplier)
    db.session.commit()
    return supplier


def update_supplier(supplier_id: int, patch: dict) -> Supplier:
    def _op() -> Supplier:
        supplier = _get_or_404(Supplier, supplier_id, "Supplier")
        for key, value in patch.items():
            if key == "name":
                supplier.name = required_text("name", value)
            elif key == "is_active":
                supplier.is_active = bool(value)
            elif key in SUPPLIER_FIELDS:
                setattr(supplier, key, optional_text(key, value, 2000 if key == "address" else 255))
        return supplier

    return run_atomic(_op)


def delete_supplier(supplier_id: int) -> None:
    """Suppliers with purchase orders are kept; deactivate them instead."""
    supplier = _get_or_404(Supplier, supplier_id, "Supplier")
    if supplier.purchase_orders:
        raise ValidationError(
            "Supplier has purchase orders and cannot be deleted",
            {"supplier_id": supplier_id, "purchase_orders": len(supplier.purchase_orders)},
        )
    db.session.delete(supplier)
    db.session.commit()
