from __future__ import annotations
from datetime import date, datetime
from invoicing.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from sqlalchemy import Boolean, Integer, Float, Numeric, String, Text, DateTime, Date
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError, ConflictError  # noqa: F401  (re-exported)


# Maximum price: 99,999,999.99 (9,999,999,999 cents)
MAX_PRICE_CENTS = 9_999_999_999

QUANTITY_TYPES = ("weight", "units")
DOCUMENT_STATUSES = ("draft", "confirmed")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer", field=key)
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)", field=key)
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)", field=key)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer", field=key)
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal", field=key)
    raise ValidationError(f"{key} must be an integer", field=key)


def _coerce_number(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number", field=key)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise ValidationError(f"{key} must be a number", field=key)
    raise ValidationError(f"{key} must be a number", field=key)


def _price_to_cents(key: str, value: Any) -> int:
    """Decimal currency amount (e.g. 100.5 or "100.50") to integer cents, half-up."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError(f"{key} must be a number", field=key)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{key} must be a number", field=key)
    if not amount.is_finite():
        raise ValidationError(f"{key} must be a number", field=key)
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    # Weights, quantities, rates
    if isinstance(coltype, (Float, Numeric)):
        return _coerce_number(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("false", "0", "no", ""):
            return False
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            return dt
        raise ValidationError(f"{col.key} must be a datetime", field=col.key)

    # Calendar dates (invoice date, shipment date)
    if isinstance(coltype, Date):
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date", field=col.key)
            if d is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date", field=col.key)
            return d
        raise ValidationError(f"{col.key} must be a date", field=col.key)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"fields": missing},
            )

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


def parse_pagination(args, *, default_limit: int = 50, max_limit: int = 100) -> tuple[int, int]:
    """Read page/limit query params (page >= 1, 1 <= limit <= max_limit)."""
    raw_page = args.get("page")
    raw_limit = args.get("limit")
    page = _coerce_int("page", raw_page) if raw_page not in (None, "") else 1
    limit = _coerce_int("limit", raw_limit) if raw_limit not in (None, "") else default_limit
    if page < 1:
        raise ValidationError("Page must be a positive integer", field="page")
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"Limit must be between 1 and {max_limit}", field="limit")
    return page, limit


def parse_date_range(args) -> tuple[datetime | None, datetime | None]:
    """Read start_date/end_date query params as UTC-naive datetimes."""
    bounds = []
    for key in ("start_date", "end_date"):
        try:
            bounds.append(parse_iso_datetime(args.get(key)))
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 date", field=key)
    return bounds[0], bounds[1]


def pagination_meta(page: int, limit: int, total: int) -> dict:
    total_pages = (total + limit - 1) // limit
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "price_cents" in patch and patch["price_cents"] is not None:
        price = patch["price_cents"]
        if price < 0:
            raise ValidationError("price_cents must be >= 0", field="price_cents")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS}", field="price_cents")

    if "weight" in patch and patch["weight"] is not None and patch["weight"] < 0:
        raise ValidationError("weight must be >= 0", field="weight")


def enforce_rules_product_group(patch: dict) -> None:
    for key in ("quantity_type", "reservation_type"):
        if key in patch and patch[key] not in QUANTITY_TYPES:
            raise ValidationError(f'{key} must be either "weight" or "units"', field=key)

    if "original_quantity" in patch and patch["original_quantity"] is not None:
        if patch["original_quantity"] < 0.01:
            raise ValidationError("original_quantity must be a positive number", field="original_quantity")

    if "reservation_amount" in patch and patch["reservation_amount"] is not None:
        if patch["reservation_amount"] < 0:
            raise ValidationError("reservation_amount must be a non-negative number", field="reservation_amount")


def enforce_rules_invoice(patch: dict) -> None:
    vat_rate = patch.get("vat_rate")
    if vat_rate is not None and not (0 <= vat_rate <= 100):
        raise ValidationError("VAT rate must be between 0 and 100", field="vat_rate")


def validate_status(value: Any) -> str:
    if value not in DOCUMENT_STATUSES:
        raise ValidationError("Status must be draft or confirmed", field="status")
    return value


def validate_line_items(items: Any, *, priced: bool) -> list[dict]:
    """
    Normalize document line items.

    priced=True (invoices): product_id, quantity >= 1, and a non-negative price
    given either as unit_price_cents (integer) or unit_price (decimal amount,
    converted to cents). unit_price_cents wins when both are present.
    priced=False (deliveries): product_id, quantity >= 1, optional unit label
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required", field="items")

    cleaned = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object", field="items")

        if item.get("product_id") is None:
            raise ValidationError("Valid product ID is required for each item", field=f"items[{index}].product_id")
        product_id = _coerce_int(f"items[{index}].product_id", item["product_id"])

        quantity = _coerce_int(f"items[{index}].quantity", item.get("quantity"))
        if quantity < 1:
            raise ValidationError("Quantity must be a positive integer", field=f"items[{index}].quantity")

        line = {"product_id": product_id, "quantity": quantity}

        if priced:
            if item.get("unit_price_cents") is not None:
                unit_price = _coerce_int(f"items[{index}].unit_price_cents", item["unit_price_cents"])
            elif item.get("unit_price") is not None:
                unit_price = _price_to_cents(f"items[{index}].unit_price", item["unit_price"])
            else:
                raise ValidationError("Unit price is required for each item", field=f"items[{index}].unit_price_cents")
            if unit_price < 0:
                raise ValidationError("Unit price must be non-negative", field=f"items[{index}].unit_price_cents")
            line["unit_price_cents"] = unit_price
        else:
            unit = item.get("unit")
            if unit is not None and not isinstance(unit, str):
                raise ValidationError("Unit must be a string", field=f"items[{index}].unit")
            line["unit"] = (unit or "").strip() or None

        cleaned.append(line)

    return cleaned
