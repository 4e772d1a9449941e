# Overview: Service-layer operations for invoices; creation with derived totals, status transitions and stock consumption.

"""
Invoice Service

LIFECYCLE: draft -> confirmed (and back). The first transition into
confirmed consumes lot stock for the invoice lines; confirmed -> draft keeps
the deduction. Confirmed invoices cannot be deleted.

DOUBLE CONFIRMATION: the status change is a compare-and-set
(UPDATE ... WHERE id = ? AND status <> ?). Only the caller whose update
actually changed the row applies consumption, so two concurrent confirms
deduct once.

MONEY: integer cents throughout. VAT is rounded half-up to the cent.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload

from ..errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Client, Invoice, InvoiceItem, Product
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_invoice,
    pagination_meta,
    validate_line_items,
    validate_payload,
    validate_status,
)
from . import activity_service, lot_service
from .activity_service import RequestContext
from .concurrency import run_with_retry, transaction
from invoicing.time_utils import utcnow


ENTITY_TYPE = "invoices"
CONFIRMED = "confirmed"

INVOICE_POLICY = ModelValidationPolicy(
    writable_fields={
        "number",
        "date",
        "due_date",
        "client_id",
        "delivery_address",
        "vat_rate",
        "reference",
        "notes",
    },
    required_on_create={"number", "date", "due_date", "client_id", "vat_rate"},
)


def compute_totals(lines: list[dict], vat_rate: float) -> tuple[int, int, int]:
    """Return (subtotal_cents, vat_amount_cents, total_cents) for priced lines."""
    subtotal = sum(line["quantity"] * line["unit_price_cents"] for line in lines)
    vat = (Decimal(subtotal) * Decimal(str(vat_rate)) / Decimal(100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    vat_cents = int(vat)
    return subtotal, vat_cents, subtotal + vat_cents


def _get_invoice_or_404(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def require_products(product_ids) -> None:
    wanted = set(product_ids)
    found = {pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(wanted)).all()}
    missing = sorted(wanted - found)
    if missing:
        raise NotFoundError("Product not found", {"product_ids": missing})


def create_invoice(payload: dict, *, actor_id: int, context: RequestContext | None = None) -> Invoice:
    """
    Create an invoice with its lines and derived totals, all in one transaction.

    Raises ValidationError, NotFoundError (client or product) or
    ConflictError (number already used).
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    header = {k: v for k, v in payload.items() if k != "items"}
    patch = validate_payload(model=Invoice, payload=header, policy=INVOICE_POLICY, partial=False)
    enforce_rules_invoice(patch)
    lines = validate_line_items(payload.get("items"), priced=True)

    subtotal, vat_amount, total = compute_totals(lines, patch["vat_rate"])

    with transaction():
        if db.session.query(Invoice.id).filter(Invoice.number == patch["number"]).first() is not None:
            raise ConflictError("Invoice number already exists", {"number": patch["number"]})
        if db.session.get(Client, patch["client_id"]) is None:
            raise NotFoundError("Client not found")
        require_products(line["product_id"] for line in lines)

        invoice = Invoice(
            subtotal_cents=subtotal,
            vat_amount_cents=vat_amount,
            total_cents=total,
            status="draft",
            created_by=actor_id,
            **patch,
        )
        for line in lines:
            invoice.items.append(
                InvoiceItem(
                    product_id=line["product_id"],
                    quantity=line["quantity"],
                    unit_price_cents=line["unit_price_cents"],
                    total_price_cents=line["quantity"] * line["unit_price_cents"],
                )
            )
        db.session.add(invoice)
        db.session.flush()

        activity_service.record(
            actor_id,
            "CREATE_INVOICE",
            ENTITY_TYPE,
            invoice.id,
            {
                "number": invoice.number,
                "client_id": invoice.client_id,
                "total_cents": total,
                "item_count": len(lines),
            },
            context,
        )

    return invoice


def list_invoices(
    *,
    search: str | None = None,
    status: str | None = None,
    client_id: int | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """Newest first; search matches invoice number or client name."""
    query = db.session.query(Invoice).join(Client, Client.id == Invoice.client_id)

    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Invoice.number.ilike(pattern), Client.name.ilike(pattern)))
    if status:
        query = query.filter(Invoice.status == validate_status(status))
    if client_id is not None:
        query = query.filter(Invoice.client_id == client_id)

    total = query.with_entities(func.count(Invoice.id)).scalar() or 0
    invoices = (
        query.options(selectinload(Invoice.items))
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    items = []
    for invoice in invoices:
        data = invoice.to_dict()
        data["item_count"] = len(invoice.items)
        items.append(data)

    return {"invoices": items, "pagination": pagination_meta(page, limit, total)}


def get_invoice(invoice_id: int) -> Invoice:
    return _get_invoice_or_404(invoice_id)


def _set_status_once(invoice_id: int, status: str, actor_id: int, context: RequestContext | None):
    with transaction():
        invoice = _get_invoice_or_404(invoice_id)
        old_status = invoice.status

        changed = (
            db.session.query(Invoice)
            .filter(Invoice.id == invoice_id, Invoice.status != status)
            .update({"status": status, "updated_at": utcnow()}, synchronize_session="fetch")
        )

        updates = []
        if status == CONFIRMED and old_status != CONFIRMED and changed == 1:
            lines = [
                lot_service.ConsumptionLine(product=item.product, quantity=item.quantity)
                for item in invoice.items
            ]
            updates = lot_service.apply_consumption(lines)
            if updates:
                activity_service.record(
                    actor_id,
                    "UPDATE_STOCK_ON_INVOICE_CONFIRMATION",
                    lot_service.ENTITY_TYPE,
                    None,
                    {"invoice_id": invoice.id, "updates": [u.to_dict() for u in updates]},
                    context,
                )

        activity_service.record(
            actor_id,
            f"UPDATE_INVOICE_STATUS_{status.upper()}",
            ENTITY_TYPE,
            invoice.id,
            {"old_status": old_status, "new_status": status},
            context,
        )

    return invoice, updates


def set_invoice_status(
    invoice_id: int, status, *, actor_id: int, context: RequestContext | None = None
) -> tuple[Invoice, list[lot_service.StockUpdate]]:
    """
    Move an invoice to draft or confirmed.

    Returns (invoice, stock_updates). stock_updates is empty unless this call
    performed the transition into confirmed.
    """
    status = validate_status(status)
    return run_with_retry(lambda: _set_status_once(invoice_id, status, actor_id, context))


def update_tracking(invoice_id: int, payload: dict, *, actor_id: int, context: RequestContext | None = None) -> Invoice:
    """Set is_delivered and/or is_paid; at least one is required."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    changes = {}
    for key in ("is_delivered", "is_paid"):
        if key in payload and payload[key] is not None:
            if not isinstance(payload[key], bool):
                raise ValidationError(f"{key} must be boolean", field=key)
            changes[key] = payload[key]
    if not changes:
        raise ValidationError("No valid fields to update")

    with transaction():
        invoice = _get_invoice_or_404(invoice_id)
        for key, value in changes.items():
            setattr(invoice, key, value)
        db.session.flush()

        activity_service.record(actor_id, "UPDATE_INVOICE_TRACKING", ENTITY_TYPE, invoice.id, changes, context)

    return invoice


def delete_invoice(invoice_id: int, *, actor_id: int, context: RequestContext | None = None) -> None:
    """Delete a draft invoice and its lines. Confirmed invoices raise InvalidStateError."""
    with transaction():
        invoice = _get_invoice_or_404(invoice_id)
        if invoice.status == CONFIRMED:
            raise InvalidStateError("Cannot delete confirmed invoice", {"status": invoice.status})

        number = invoice.number
        db.session.delete(invoice)
        db.session.flush()

        activity_service.record(actor_id, "DELETE_INVOICE", ENTITY_TYPE, invoice_id, {"number": number}, context)
