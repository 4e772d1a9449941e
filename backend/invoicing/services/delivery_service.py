# Overview: Service-layer operations for delivery notes.

"""
Delivery notes share the invoice lifecycle (draft/confirmed, no delete once
confirmed) but carry no prices and have no stock effect.
"""

from __future__ import annotations

from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload

from ..errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Client, Delivery, DeliveryItem
from ..validation import (
    ModelValidationPolicy,
    pagination_meta,
    validate_line_items,
    validate_payload,
    validate_status,
)
from . import activity_service
from .activity_service import RequestContext
from .concurrency import transaction
from .invoice_service import require_products


ENTITY_TYPE = "deliveries"

DELIVERY_POLICY = ModelValidationPolicy(
    writable_fields={"number", "date", "due_date", "client_id", "delivery_method", "notes"},
    required_on_create={"number", "date", "due_date", "client_id"},
)


def _get_delivery_or_404(delivery_id: int) -> Delivery:
    delivery = db.session.get(Delivery, delivery_id)
    if delivery is None:
        raise NotFoundError("Delivery not found")
    return delivery


def create_delivery(payload: dict, *, actor_id: int, context: RequestContext | None = None) -> Delivery:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    header = {k: v for k, v in payload.items() if k != "items"}
    patch = validate_payload(model=Delivery, payload=header, policy=DELIVERY_POLICY, partial=False)
    lines = validate_line_items(payload.get("items"), priced=False)

    with transaction():
        if db.session.query(Delivery.id).filter(Delivery.number == patch["number"]).first() is not None:
            raise ConflictError("Delivery number already exists", {"number": patch["number"]})
        if db.session.get(Client, patch["client_id"]) is None:
            raise NotFoundError("Client not found")
        require_products(line["product_id"] for line in lines)

        delivery = Delivery(status="draft", created_by=actor_id, **patch)
        for line in lines:
            delivery.items.append(
                DeliveryItem(
                    product_id=line["product_id"],
                    quantity=line["quantity"],
                    unit=line["unit"] or DeliveryItem.DEFAULT_UNIT,
                )
            )
        db.session.add(delivery)
        db.session.flush()

        activity_service.record(
            actor_id,
            "CREATE_DELIVERY",
            ENTITY_TYPE,
            delivery.id,
            {"number": delivery.number, "client_id": delivery.client_id, "item_count": len(lines)},
            context,
        )

    return delivery


def list_deliveries(
    *,
    search: str | None = None,
    status: str | None = None,
    client_id: int | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    query = db.session.query(Delivery).join(Client, Client.id == Delivery.client_id)

    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Delivery.number.ilike(pattern), Client.name.ilike(pattern)))
    if status:
        query = query.filter(Delivery.status == validate_status(status))
    if client_id is not None:
        query = query.filter(Delivery.client_id == client_id)

    total = query.with_entities(func.count(Delivery.id)).scalar() or 0
    deliveries = (
        query.options(selectinload(Delivery.items))
        .order_by(Delivery.created_at.desc(), Delivery.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    items = []
    for delivery in deliveries:
        data = delivery.to_dict()
        data["item_count"] = len(delivery.items)
        items.append(data)

    return {"deliveries": items, "pagination": pagination_meta(page, limit, total)}


def get_delivery(delivery_id: int) -> Delivery:
    return _get_delivery_or_404(delivery_id)


def set_delivery_status(delivery_id: int, status, *, actor_id: int, context: RequestContext | None = None) -> Delivery:
    status = validate_status(status)

    with transaction():
        delivery = _get_delivery_or_404(delivery_id)
        old_status = delivery.status
        delivery.status = status
        db.session.flush()

        activity_service.record(
            actor_id,
            f"UPDATE_DELIVERY_STATUS_{status.upper()}",
            ENTITY_TYPE,
            delivery.id,
            {"old_status": old_status, "new_status": status},
            context,
        )

    return delivery


def set_signed(delivery_id: int, is_signed, *, actor_id: int, context: RequestContext | None = None) -> Delivery:
    if not isinstance(is_signed, bool):
        raise ValidationError("is_signed must be boolean", field="is_signed")

    with transaction():
        delivery = _get_delivery_or_404(delivery_id)
        delivery.is_signed = is_signed
        db.session.flush()

        activity_service.record(
            actor_id, "UPDATE_DELIVERY_SIGNED", ENTITY_TYPE, delivery.id, {"is_signed": is_signed}, context
        )

    return delivery


def delete_delivery(delivery_id: int, *, actor_id: int, context: RequestContext | None = None) -> None:
    with transaction():
        delivery = _get_delivery_or_404(delivery_id)
        if delivery.status == "confirmed":
            raise InvalidStateError("Cannot delete confirmed delivery", {"status": delivery.status})

        number = delivery.number
        db.session.delete(delivery)
        db.session.flush()

        activity_service.record(actor_id, "DELETE_DELIVERY", ENTITY_TYPE, delivery_id, {"number": number}, context)
