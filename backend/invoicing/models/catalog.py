from __future__ import annotations

from ..extensions import db
from invoicing.time_utils import to_utc_z, to_iso_date


class Product(db.Model):
    """
    Sellable item.

    weight is grams per unit; a positive weight is what lets a product take
    part in lot tracking (see ProductGroup). Referenced products are
    deactivated rather than deleted.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(128), nullable=True)

    price_cents = db.Column(db.Integer, nullable=False, default=0)
    weight = db.Column(db.Float, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    group_membership = db.relationship("ProductGroupItem", back_populates="product", uselist=False, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "weight": self.weight,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductGroup(db.Model):
    """
    Inventory lot: a shipment-tracked quantity pool shared by member products.

    current_quantity starts at original - 5% shrinkage - reservation (never
    below zero) and only decreases as invoices over member products are
    confirmed.
    """
    __tablename__ = "product_groups"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, unique=True)

    quantity_type = db.Column(db.String(16), nullable=False, default="weight")
    original_quantity = db.Column(db.Float, nullable=False)
    current_quantity = db.Column(db.Float, nullable=False)
    shipment_date = db.Column(db.Date, nullable=False)

    reservation_type = db.Column(db.String(16), nullable=False, default="weight")
    reservation_amount = db.Column(db.Float, nullable=False, default=0)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    items = db.relationship(
        "ProductGroupItem",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="ProductGroupItem.id",
    )

    def to_dict(self, include_products: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "quantity_type": self.quantity_type,
            "original_quantity": self.original_quantity,
            "current_quantity": self.current_quantity,
            "shipment_date": to_iso_date(self.shipment_date),
            "reservation_type": self.reservation_type,
            "reservation_amount": self.reservation_amount,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_products:
            data["products"] = [
                {
                    "id": item.product.id,
                    "code": item.product.code,
                    "name": item.product.name,
                    "weight": item.product.weight,
                    "added_at": to_utc_z(item.created_at),
                }
                for item in self.items
            ]
        return data


class ProductGroupItem(db.Model):
    """Lot membership. product_id is unique: a product belongs to at most one lot."""
    __tablename__ = "product_group_items"
    __table_args__ = (
        db.UniqueConstraint("product_id", name="uq_product_group_items_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("product_groups.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    group = db.relationship("ProductGroup", back_populates="items")
    product = db.relationship("Product", back_populates="group_membership")
