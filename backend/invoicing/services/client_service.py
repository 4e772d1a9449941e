# Overview: Service-layer operations for clients; CRUD, referential delete guard and purchase statistics.

from __future__ import annotations

from datetime import date

from sqlalchemy import func, or_

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Client, Delivery, Invoice, InvoiceItem, Product
from ..validation import ModelValidationPolicy, pagination_meta, validate_payload
from . import activity_service
from .activity_service import RequestContext
from .concurrency import transaction


ENTITY_TYPE = "clients"
STAT_PERIODS = ("month", "quarter", "year")

CLIENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "legal_name", "mb", "pib",
        "address", "city", "municipality", "street", "house_number",
        "google_maps_link", "is_manual_address",
        "contact_person", "contact", "bank_info",
        "telegram", "instagram", "phone", "email",
        "installment_payment", "installment_term", "showcase", "bar",
        "notes",
    },
    required_on_create={"name", "legal_name", "mb", "pib", "address"},
)


def _get_client_or_404(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found")
    return client


def _enforce_rules(patch: dict) -> None:
    term = patch.get("installment_term")
    if term is not None and term < 1:
        raise ValidationError("Installment term must be a positive integer", field="installment_term")
    email = patch.get("email")
    if email and "@" not in email:
        raise ValidationError("Must be a valid email address", field="email")


def _ensure_identifiers_free(mb: str | None, pib: str | None, exclude_id: int | None = None) -> None:
    """MB and PIB are each unique across all clients."""
    conditions = []
    if mb:
        conditions.append(Client.mb == mb)
    if pib:
        conditions.append(Client.pib == pib)
    if not conditions:
        return

    query = db.session.query(Client.id).filter(or_(*conditions))
    if exclude_id is not None:
        query = query.filter(Client.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Client with this MB or PIB already exists", {"mb": mb, "pib": pib})


def list_clients(*, search: str | None = None, page: int = 1, limit: int = 50) -> dict:
    """Alphabetical; search matches name, MB or PIB."""
    query = db.session.query(Client)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Client.name.ilike(pattern), Client.mb.ilike(pattern), Client.pib.ilike(pattern)))

    total = query.with_entities(func.count(Client.id)).scalar() or 0
    clients = query.order_by(Client.name.asc(), Client.id.asc()).offset((page - 1) * limit).limit(limit).all()

    return {"clients": [c.to_dict() for c in clients], "pagination": pagination_meta(page, limit, total)}


def get_client(client_id: int) -> Client:
    return _get_client_or_404(client_id)


def create_client(payload: dict, *, actor_id: int, context: RequestContext | None = None) -> Client:
    patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=False)
    _enforce_rules(patch)

    with transaction():
        _ensure_identifiers_free(patch.get("mb"), patch.get("pib"))

        client = Client(created_by=actor_id, **patch)
        db.session.add(client)
        db.session.flush()

        activity_service.record(actor_id, "CREATE_CLIENT", ENTITY_TYPE, client.id, {"name": client.name}, context)

    return client


def update_client(client_id: int, payload: dict, *, actor_id: int, context: RequestContext | None = None) -> Client:
    patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=True)
    if not patch:
        raise ValidationError("No valid fields to update")
    _enforce_rules(patch)

    with transaction():
        client = _get_client_or_404(client_id)
        _ensure_identifiers_free(patch.get("mb"), patch.get("pib"), exclude_id=client.id)

        for key, value in patch.items():
            setattr(client, key, value)
        db.session.flush()

        activity_service.record(
            actor_id, "UPDATE_CLIENT", ENTITY_TYPE, client.id, {"name": client.name, "fields": sorted(patch)}, context
        )

    return client


def delete_client(client_id: int, *, actor_id: int, context: RequestContext | None = None) -> None:
    """
    Delete a client with no documents.

    Raises ConflictError carrying the invoice and delivery counts while any
    document references the client.
    """
    with transaction():
        client = _get_client_or_404(client_id)

        invoice_count = db.session.query(func.count(Invoice.id)).filter(Invoice.client_id == client.id).scalar() or 0
        delivery_count = db.session.query(func.count(Delivery.id)).filter(Delivery.client_id == client.id).scalar() or 0
        if invoice_count or delivery_count:
            raise ConflictError(
                "Cannot delete client with existing invoices or deliveries",
                {"invoices": invoice_count, "deliveries": delivery_count},
            )

        name = client.name
        db.session.delete(client)
        db.session.flush()

        activity_service.record(actor_id, "DELETE_CLIENT", ENTITY_TYPE, client_id, {"name": name}, context)


def client_invoices(client_id: int) -> list[Invoice]:
    _get_client_or_404(client_id)
    return (
        db.session.query(Invoice)
        .filter(Invoice.client_id == client_id)
        .order_by(Invoice.date.desc(), Invoice.id.desc())
        .all()
    )


def client_deliveries(client_id: int) -> list[Delivery]:
    _get_client_or_404(client_id)
    return (
        db.session.query(Delivery)
        .filter(Delivery.client_id == client_id)
        .order_by(Delivery.date.desc(), Delivery.id.desc())
        .all()
    )


def period_start(period: str, today: date) -> date:
    """First day of the current month, quarter or year."""
    if period == "month":
        return today.replace(day=1)
    if period == "quarter":
        return date(today.year, 3 * ((today.month - 1) // 3) + 1, 1)
    if period == "year":
        return date(today.year, 1, 1)
    raise ValidationError("Period must be month, quarter or year", field="period")


def client_statistics(client_id: int, period: str = "year", *, today: date | None = None) -> dict:
    """
    Purchase statistics over confirmed invoices dated within the current period.

    annual_consumption is the unit count over the current calendar year,
    whatever period is requested.
    """
    today = today or date.today()
    start = period_start(period, today)
    year_start = date(today.year, 1, 1)

    _get_client_or_404(client_id)

    confirmed = (Invoice.client_id == client_id, Invoice.status == "confirmed")

    invoice_count, average_cents, revenue_cents = (
        db.session.query(
            func.count(Invoice.id),
            func.coalesce(func.avg(Invoice.total_cents), 0),
            func.coalesce(func.sum(Invoice.total_cents), 0),
        )
        .filter(*confirmed, Invoice.date >= start)
        .one()
    )

    units = func.sum(InvoiceItem.quantity).label("units")
    popular = (
        db.session.query(Product.name, units)
        .join(InvoiceItem, InvoiceItem.product_id == Product.id)
        .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
        .filter(*confirmed, Invoice.date >= start)
        .group_by(Product.id, Product.name)
        .order_by(units.desc(), Product.name.asc())
        .first()
    )

    annual = (
        db.session.query(func.coalesce(func.sum(InvoiceItem.quantity), 0))
        .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
        .filter(*confirmed, Invoice.date >= year_start)
        .scalar()
    )

    return {
        "invoice_count": int(invoice_count or 0),
        "average_order_value_cents": int(round(float(average_cents or 0))),
        "total_revenue_cents": int(revenue_cents or 0),
        "most_popular_product": popular.name if popular else None,
        "annual_consumption": int(annual or 0),
        "period": period,
    }
