# Overview: Service-layer operations for products; CRUD, soft-delete when referenced, usage statistics.

from __future__ import annotations

from sqlalchemy import func, or_

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import DeliveryItem, InvoiceItem, Product
from ..validation import ModelValidationPolicy, enforce_rules_product, pagination_meta, validate_payload
from . import activity_service
from .activity_service import RequestContext
from .concurrency import transaction


ENTITY_TYPE = "products"

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "price_cents", "weight", "category", "description", "is_active"},
    required_on_create={"code", "name", "price_cents"},
)


def _get_product_or_404(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product


def _ensure_code_free(code: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.code == code)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Product with this code already exists", {"code": code})


def list_products(
    *,
    search: str | None = None,
    category: str | None = None,
    active_only: bool = False,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """Alphabetical by name; search matches name or code."""
    query = db.session.query(Product)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.code.ilike(pattern)))
    if category:
        query = query.filter(Product.category == category)
    if active_only:
        query = query.filter(Product.is_active.is_(True))

    total = query.with_entities(func.count(Product.id)).scalar() or 0
    products = query.order_by(Product.name.asc(), Product.id.asc()).offset((page - 1) * limit).limit(limit).all()

    return {"products": [p.to_dict() for p in products], "pagination": pagination_meta(page, limit, total)}


def list_categories() -> list[str]:
    """Distinct categories of active products."""
    rows = (
        db.session.query(Product.category)
        .filter(Product.is_active.is_(True), Product.category.isnot(None), Product.category != "")
        .distinct()
        .order_by(Product.category.asc())
        .all()
    )
    return [row[0] for row in rows]


def get_product(product_id: int) -> Product:
    return _get_product_or_404(product_id)


def create_product(payload: dict, *, actor_id: int, context: RequestContext | None = None) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    if patch.get("weight") is None:
        patch["weight"] = 0.0

    with transaction():
        _ensure_code_free(patch["code"])

        product = Product(created_by=actor_id, **patch)
        db.session.add(product)
        db.session.flush()

        activity_service.record(
            actor_id, "CREATE_PRODUCT", ENTITY_TYPE, product.id, {"code": product.code, "name": product.name}, context
        )

    return product


def update_product(product_id: int, payload: dict, *, actor_id: int, context: RequestContext | None = None) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    if not patch:
        raise ValidationError("No valid fields to update")
    enforce_rules_product(patch)
    if "weight" in patch and patch["weight"] is None:
        patch["weight"] = 0.0

    with transaction():
        product = _get_product_or_404(product_id)
        if "code" in patch:
            _ensure_code_free(patch["code"], exclude_id=product.id)

        for key, value in patch.items():
            setattr(product, key, value)
        db.session.flush()

        activity_service.record(
            actor_id,
            "UPDATE_PRODUCT",
            ENTITY_TYPE,
            product.id,
            {"code": product.code, "fields": sorted(patch)},
            context,
        )

    return product


def delete_product(product_id: int, *, actor_id: int, context: RequestContext | None = None) -> Product | None:
    """
    Hard-delete an unused product, or deactivate it when any invoice or
    delivery line references it.

    Returns the deactivated product, or None when the row was deleted.
    """
    with transaction():
        product = _get_product_or_404(product_id)

        invoice_usage = db.session.query(func.count(InvoiceItem.id)).filter(InvoiceItem.product_id == product.id).scalar()
        delivery_usage = db.session.query(func.count(DeliveryItem.id)).filter(DeliveryItem.product_id == product.id).scalar()

        if invoice_usage or delivery_usage:
            product.is_active = False
            db.session.flush()
            activity_service.record(
                actor_id,
                "DEACTIVATE_PRODUCT",
                ENTITY_TYPE,
                product.id,
                {"code": product.code, "invoice_usage": invoice_usage, "delivery_usage": delivery_usage},
                context,
            )
            return product

        details = {"code": product.code, "name": product.name}
        db.session.delete(product)
        db.session.flush()

        activity_service.record(actor_id, "DELETE_PRODUCT", ENTITY_TYPE, product_id, details, context)

    return None


def activate_product(product_id: int, *, actor_id: int, context: RequestContext | None = None) -> Product:
    with transaction():
        product = _get_product_or_404(product_id)
        product.is_active = True
        db.session.flush()

        activity_service.record(actor_id, "ACTIVATE_PRODUCT", ENTITY_TYPE, product.id, {"code": product.code}, context)

    return product


def product_stats(product_id: int) -> dict:
    product = _get_product_or_404(product_id)

    invoice_count, sold_quantity, revenue = (
        db.session.query(
            func.count(func.distinct(InvoiceItem.invoice_id)),
            func.coalesce(func.sum(InvoiceItem.quantity), 0),
            func.coalesce(func.sum(InvoiceItem.total_price_cents), 0),
        )
        .filter(InvoiceItem.product_id == product.id)
        .one()
    )
    delivery_count = (
        db.session.query(func.count(func.distinct(DeliveryItem.delivery_id)))
        .filter(DeliveryItem.product_id == product.id)
        .scalar()
    )

    return {
        "id": product.id,
        "code": product.code,
        "name": product.name,
        "invoice_count": int(invoice_count or 0),
        "delivery_count": int(delivery_count or 0),
        "total_sold_quantity": int(sold_quantity or 0),
        "total_revenue_cents": int(revenue or 0),
    }
