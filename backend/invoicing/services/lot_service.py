# Overview: Service-layer operations for inventory lots (product groups); balances, membership and consumption.

"""
Inventory Lot Ledger

A lot ("product group") is a shipment-tracked quantity pool. Its starting
balance withholds a fixed 5% shrinkage allowance and the reservation:

    current = max(0, original - original * 0.05 - reservation)

Products join at most one lot. When an invoice over member products is
confirmed, the lot balance drops by product.weight * quantity per line,
floored at zero.

TRANSACTIONS: create/update/add/remove/delete each run in their own
transaction() together with their audit entry. apply_consumption never
commits; it runs inside the caller's transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import date

from ..errors import (
    AlreadyGroupedError,
    DuplicateNameError,
    InvalidProductError,
    NotFoundError,
    ValidationError,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Product, ProductGroup, ProductGroupItem
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_product_group
from . import activity_service
from .activity_service import RequestContext
from .concurrency import lock_for_update, transaction
from invoicing.time_utils import to_iso_date


SHRINKAGE_RATE = 0.05
ENTITY_TYPE = "product_groups"

LOT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "quantity_type",
        "original_quantity",
        "shipment_date",
        "reservation_type",
        "reservation_amount",
    },
    required_on_create={"name", "quantity_type", "original_quantity", "shipment_date", "reservation_type"},
)


@dataclass(frozen=True)
class ConsumptionLine:
    product: Product
    quantity: int


@dataclass(frozen=True)
class StockUpdate:
    group_id: int
    product_id: int
    product_code: str
    product_name: str
    quantity_used: int
    weight_used: float
    old_stock: float
    new_stock: float

    def to_dict(self) -> dict:
        return asdict(self)


def initial_balance(original_quantity: float, reservation_amount: float) -> float:
    return max(0.0, original_quantity - original_quantity * SHRINKAGE_RATE - reservation_amount)


def _get_lot_or_404(lot_id: int) -> ProductGroup:
    lot = db.session.get(ProductGroup, lot_id)
    if lot is None:
        raise NotFoundError("Product group not found")
    return lot


def _name_taken(name: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(ProductGroup.id).filter(ProductGroup.name == name)
    if exclude_id is not None:
        query = query.filter(ProductGroup.id != exclude_id)
    return query.first() is not None


def _jsonable(patch: dict) -> dict:
    return {k: to_iso_date(v) if isinstance(v, date) else v for k, v in patch.items()}


def list_lots() -> list[ProductGroup]:
    """All lots, newest first, with member products loaded."""
    return (
        db.session.query(ProductGroup)
        .options(selectinload(ProductGroup.items).joinedload(ProductGroupItem.product))
        .order_by(ProductGroup.created_at.desc(), ProductGroup.id.desc())
        .all()
    )


def get_lot(lot_id: int) -> ProductGroup:
    return _get_lot_or_404(lot_id)


def create_lot(payload: dict, *, actor_id: int, context: RequestContext | None = None) -> ProductGroup:
    """
    Create a lot with its shrinkage/reservation-adjusted starting balance.

    Raises ValidationError on bad input and DuplicateNameError when the name
    is already used.
    """
    patch = validate_payload(model=ProductGroup, payload=payload, policy=LOT_POLICY, partial=False)
    patch.setdefault("reservation_amount", 0.0)
    if patch["reservation_amount"] is None:
        patch["reservation_amount"] = 0.0
    enforce_rules_product_group(patch)

    with transaction():
        if _name_taken(patch["name"]):
            raise DuplicateNameError("Product group with this name already exists", {"name": patch["name"]})

        lot = ProductGroup(
            current_quantity=initial_balance(patch["original_quantity"], patch["reservation_amount"]),
            created_by=actor_id,
            **patch,
        )
        db.session.add(lot)
        db.session.flush()

        activity_service.record(
            actor_id,
            "CREATE_PRODUCT_GROUP",
            ENTITY_TYPE,
            lot.id,
            {
                "name": lot.name,
                "quantity_type": lot.quantity_type,
                "original_quantity": lot.original_quantity,
                "current_quantity": lot.current_quantity,
                "shipment_date": to_iso_date(lot.shipment_date),
                "reservation_amount": lot.reservation_amount,
            },
            context,
        )

    return lot


def update_lot(lot_id: int, payload: dict, *, actor_id: int, context: RequestContext | None = None) -> ProductGroup:
    """
    Patch lot attributes.

    The stored current_quantity is left as is; it is only set at creation
    and moved by consumption.
    """
    patch = validate_payload(model=ProductGroup, payload=payload, policy=LOT_POLICY, partial=True)
    if not patch:
        raise ValidationError("No valid fields to update")
    enforce_rules_product_group(patch)
    if "reservation_amount" in patch and patch["reservation_amount"] is None:
        patch["reservation_amount"] = 0.0

    with transaction():
        lot = _get_lot_or_404(lot_id)
        if "name" in patch and _name_taken(patch["name"], exclude_id=lot.id):
            raise DuplicateNameError("Product group with this name already exists", {"name": patch["name"]})

        for key, value in patch.items():
            setattr(lot, key, value)
        db.session.flush()

        activity_service.record(actor_id, "UPDATE_PRODUCT_GROUP", ENTITY_TYPE, lot.id, _jsonable(patch), context)

    return lot


def _current_group_name(product_id: int) -> str | None:
    row = (
        db.session.query(ProductGroup.name)
        .join(ProductGroupItem, ProductGroupItem.group_id == ProductGroup.id)
        .filter(ProductGroupItem.product_id == product_id)
        .first()
    )
    return row.name if row is not None else None


def add_product(lot_id: int, product_id: int, *, actor_id: int, context: RequestContext | None = None) -> ProductGroupItem:
    """
    Attach a product to a lot.

    Raises NotFoundError (lot or product), InvalidProductError (no positive
    weight) or AlreadyGroupedError (product already in any lot).
    """
    with transaction():
        lot = _get_lot_or_404(lot_id)

        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if not product.weight or product.weight <= 0:
            raise InvalidProductError("Product must have a valid weight to be added to a group", field="product_id")

        group_name = _current_group_name(product.id)
        if group_name is not None:
            raise AlreadyGroupedError(
                f"Product is already in group: {group_name}",
                {"product_id": product.id, "group_name": group_name},
            )

        item = ProductGroupItem(group_id=lot.id, product_id=product.id)
        db.session.add(item)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # A concurrent add won the unique product_id slot
            raise AlreadyGroupedError(
                "Product is already in a group", {"product_id": product.id}
            ) from exc

        activity_service.record(
            actor_id,
            "ADD_PRODUCT_TO_GROUP",
            ENTITY_TYPE,
            lot.id,
            {"product_id": product.id, "product_code": product.code, "product_name": product.name},
            context,
        )

    return item


def remove_product(lot_id: int, product_id: int, *, actor_id: int, context: RequestContext | None = None) -> None:
    with transaction():
        item = (
            db.session.query(ProductGroupItem)
            .filter_by(group_id=lot_id, product_id=product_id)
            .first()
        )
        if item is None:
            raise NotFoundError("Product not found in this group")

        db.session.delete(item)
        db.session.flush()

        activity_service.record(
            actor_id, "REMOVE_PRODUCT_FROM_GROUP", ENTITY_TYPE, lot_id, {"product_id": product_id}, context
        )


def delete_lot(lot_id: int, *, actor_id: int, context: RequestContext | None = None) -> None:
    """Delete a lot; its memberships go with it."""
    with transaction():
        lot = _get_lot_or_404(lot_id)
        name = lot.name
        db.session.delete(lot)
        db.session.flush()

        activity_service.record(actor_id, "DELETE_PRODUCT_GROUP", ENTITY_TYPE, lot_id, {"name": name}, context)


def apply_consumption(lines) -> list[StockUpdate]:
    """
    Deduct product.weight * quantity from the owning lot for each line.

    Lines whose product has no positive weight or belongs to no lot are
    skipped. The balance never drops below zero. Runs inside the caller's
    transaction and never commits.
    """
    updates: list[StockUpdate] = []

    for line in lines:
        product = line.product
        if not product.weight or product.weight <= 0:
            continue

        lot = lock_for_update(
            db.session.query(ProductGroup)
            .join(ProductGroupItem, ProductGroupItem.group_id == ProductGroup.id)
            .filter(ProductGroupItem.product_id == product.id)
        ).first()
        if lot is None:
            continue

        weight_used = product.weight * line.quantity
        old_stock = lot.current_quantity
        new_stock = max(0.0, old_stock - weight_used)
        lot.current_quantity = new_stock

        updates.append(
            StockUpdate(
                group_id=lot.id,
                product_id=product.id,
                product_code=product.code,
                product_name=product.name,
                quantity_used=line.quantity,
                weight_used=weight_used,
                old_stock=old_stock,
                new_stock=new_stock,
            )
        )

    db.session.flush()
    return updates


def update_stock(items, *, actor_id: int, context: RequestContext | None = None) -> list[StockUpdate]:
    """
    Apply consumption for [{"product_id", "quantity"}] outside an invoice.

    Product weights are read from the database, not from the caller.
    """
    if not isinstance(items, list):
        raise ValidationError("Invoice items must be an array", field="invoice_items")

    requested = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"invoice_items[{index}] must be an object", field="invoice_items")
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("Each item must have a product_id", field=f"invoice_items[{index}].product_id")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(
                "Each item must have a positive quantity", field=f"invoice_items[{index}].quantity"
            )
        requested.append((product_id, quantity))

    with transaction():
        lines = []
        for product_id, quantity in requested:
            product = db.session.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product not found", {"product_id": product_id})
            lines.append(ConsumptionLine(product=product, quantity=quantity))

        updates = apply_consumption(lines)
        if updates:
            activity_service.record(
                actor_id,
                "UPDATE_STOCK_ON_INVOICE_APPROVAL",
                ENTITY_TYPE,
                None,
                {"updates": [u.to_dict() for u in updates]},
                context,
            )

    return updates
