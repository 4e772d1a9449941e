from __future__ import annotations

from ..extensions import db
from invoicing.time_utils import to_utc_z, to_iso_date


class Invoice(db.Model):
    """
    Billable document.

    Totals are derived once at creation from the line items:
        subtotal = sum(quantity * unit_price)
        vat      = subtotal * vat_rate / 100 (half-up to the cent)
        total    = subtotal + vat

    status: draft -> confirmed. Confirmed invoices cannot be deleted, and the
    first transition to confirmed consumes lot stock.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_client_date", "client_id", "date"),
        db.Index("ix_invoices_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    number = db.Column(db.String(64), nullable=False, unique=True)
    date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    delivery_address = db.Column(db.Text, nullable=True)
    reference = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    vat_rate = db.Column(db.Float, nullable=False, default=20)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="draft")
    is_delivered = db.Column(db.Boolean, nullable=False, default=False)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    client = db.relationship("Client")
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "date": to_iso_date(self.date),
            "due_date": to_iso_date(self.due_date),
            "client_id": self.client_id,
            "client_name": self.client.name if self.client else None,
            "delivery_address": self.delivery_address,
            "reference": self.reference,
            "notes": self.notes,
            "vat_rate": self.vat_rate,
            "subtotal_cents": self.subtotal_cents,
            "vat_amount_cents": self.vat_amount_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "is_delivered": self.is_delivered,
            "is_paid": self.is_paid,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    # Price snapshot at invoicing time, decoupled from Product.price_cents
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    invoice = db.relationship("Invoice", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.code if self.product else None,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }


class Delivery(db.Model):
    """Delivery note. Same lifecycle as Invoice, without pricing or stock effect."""
    __tablename__ = "deliveries"
    __table_args__ = (
        db.Index("ix_deliveries_client_date", "client_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    number = db.Column(db.String(64), nullable=False, unique=True)
    date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    delivery_method = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="draft")
    is_signed = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    client = db.relationship("Client")
    items = db.relationship(
        "DeliveryItem",
        back_populates="delivery",
        cascade="all, delete-orphan",
        order_by="DeliveryItem.id",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "date": to_iso_date(self.date),
            "due_date": to_iso_date(self.due_date),
            "client_id": self.client_id,
            "client_name": self.client.name if self.client else None,
            "delivery_method": self.delivery_method,
            "notes": self.notes,
            "status": self.status,
            "is_signed": self.is_signed,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class DeliveryItem(db.Model):
    __tablename__ = "delivery_items"
    __table_args__ = {"sqlite_autoincrement": True}

    DEFAULT_UNIT = "ком"

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(32), nullable=False, default=DEFAULT_UNIT)

    delivery = db.relationship("Delivery", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.code if self.product else None,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit": self.unit,
        }
