from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_categories_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}


class UsageRoute(db.Model):
    """How a product is administered (oral, topical, injection...)."""
    __tablename__ = "usage_routes"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_usage_routes_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}


class Unit(db.Model):
    """Unit of measure (tablet, blister, box, bottle)."""
    __tablename__ = "units"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_units_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}


# =============================================================================
# STORAGE LOCATIONS (cabinet -> row -> compartment)
# =============================================================================

class Cabinet(db.Model):
    __tablename__ = "cabinets"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    rows = db.relationship(
        "ShelfRow",
        back_populates="cabinet",
        order_by="ShelfRow.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}


class ShelfRow(db.Model):
    __tablename__ = "shelf_rows"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cabinet_id = db.Column(db.Integer, db.ForeignKey("cabinets.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    cabinet = db.relationship("Cabinet", back_populates="rows")
    compartments = db.relationship(
        "Compartment",
        back_populates="row",
        order_by="Compartment.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {"id": self.id, "cabinet_id": self.cabinet_id, "name": self.name}


class Compartment(db.Model):
    __tablename__ = "compartments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    row_id = db.Column(db.Integer, db.ForeignKey("shelf_rows.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    row = db.relationship("ShelfRow", back_populates="compartments")

    def location_label(self) -> str:
        return f"{self.row.cabinet.name} / {self.row.name} / {self.name}"

    def to_dict(self) -> dict:
        return {"id": self.id, "row_id": self.row_id, "name": self.name}


# =============================================================================
# PRODUCTS
# =============================================================================

class Product(db.Model):
    """
    Product master data.

    A product is sold and purchased in one or more ProductUnits. Exactly one
    of them is the base unit (conversion_factor == 1); every other unit
    states how many base units it contains.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_products_code"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    usage_route_id = db.Column(db.Integer, db.ForeignKey("usage_routes.id"), nullable=True, index=True)
    compartment_id = db.Column(db.Integer, db.ForeignKey("compartments.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    usage_route = db.relationship("UsageRoute")
    compartment = db.relationship("Compartment", backref=db.backref("products", lazy=True))
    units = db.relationship(
        "ProductUnit",
        back_populates="product",
        order_by="ProductUnit.id",
        cascade="all, delete-orphan",
    )

    @property
    def base_unit(self) -> "ProductUnit | None":
        for pu in self.units:
            if pu.is_base_unit:
                return pu
        return None

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "category_id": self.category_id,
            "usage_route_id": self.usage_route_id,
            "compartment_id": self.compartment_id,
            "is_active": self.is_active,
            "units": [pu.to_dict() for pu in self.units],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductUnit(db.Model):
    __tablename__ = "product_units"
    __table_args__ = (
        db.UniqueConstraint("product_id", "unit_id", name="uq_product_units_product_unit"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False, index=True)

    # How many base units one of this unit holds (base unit: 1)
    conversion_factor = db.Column(db.Float, nullable=False, default=1.0)

    cost_price = db.Column(db.Integer, nullable=False, default=0)
    selling_price = db.Column(db.Integer, nullable=False, default=0)

    is_base_unit = db.Column(db.Boolean, nullable=False, default=False)

    product = db.relationship("Product", back_populates="units")
    unit = db.relationship("Unit")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "unit_name": self.unit.name if self.unit else None,
            "conversion_factor": self.conversion_factor,
            "cost_price": self.cost_price,
            "selling_price": self.selling_price,
            "is_base_unit": self.is_base_unit,
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)
    tax_code = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "tax_code": self.tax_code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
