from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Float, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationFailed
from .models import PRODUCT_STATUSES


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_STOCK_QUANTITY = 1_000_000_000
# Upper bound of a signed 64-bit INTEGER column (ids)
MAX_DB_INTEGER = 2**63 - 1


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


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationFailed([{"field": field, "message": f"{field} must be an integer"}])
        if 'e' in stripped.lower():
            raise ValidationFailed([{"field": field, "message": f"{field} must be a plain integer (scientific notation not allowed)"}])
        if '.' in stripped:
            raise ValidationFailed([{"field": field, "message": f"{field} must be an integer (no decimals)"}])
        try:
            return int(stripped)
        except ValueError:
            raise ValidationFailed([{"field": field, "message": f"{field} must be an integer"}])
    if isinstance(value, float):
        raise ValidationFailed([{"field": field, "message": f"{field} must be an integer, not a decimal"}])
    raise ValidationFailed([{"field": field, "message": f"{field} must be an integer"}])


def coerce_id(value: Any, field: str) -> int:
    """coerce_int() restricted to the positive range a primary key can hold."""
    value = coerce_int(value, field)
    if not 1 <= value <= MAX_DB_INTEGER:
        raise ValidationFailed([{"field": field, "message": f"{field} is out of range"}])
    return value


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        value = coerce_int(value, col.key)
        if abs(value) > MAX_DB_INTEGER:
            raise ValidationFailed([{"field": col.key, "message": f"{col.key} is out of range"}])
        return value

    if isinstance(coltype, Float):
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValidationFailed([{"field": col.key, "message": f"{col.key} must be a number"}])
        try:
            return float(value)
        except ValueError:
            raise ValidationFailed([{"field": col.key, "message": f"{col.key} must be a number"}])

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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

    All field problems are collected and raised together as one
    ValidationFailed.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")

    errors: list[dict] = []

    required = policy.required_on_create or set()
    if not partial:
        for f in sorted(required):
            if f not in payload:
                errors.append({"field": f, "message": f"{f} is required"})

    cols = _columns_by_key(model)
    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            errors.append({"field": k, "message": f"Field not allowed: {k}"})
            continue

        col = cols[k]

        if raw is None:
            if not col.nullable:
                errors.append({"field": k, "message": f"{k} cannot be null"})
                continue
            patch[k] = None
            continue

        try:
            val = _coerce_value(col, raw)
        except ValidationFailed as e:
            errors.extend(e.errors)
            continue

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                errors.append({"field": k, "message": f"{k} cannot be blank"})
                continue

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                errors.append({"field": k, "message": f"{k} exceeds max length {col.type.length}"})
                continue

        patch[k] = val

    if errors:
        raise ValidationFailed(errors)
    return patch


def enforce_rules_product(patch: dict, *, current=None) -> None:
    """
    Catalog rules that are not captured by SQLAlchemy metadata alone.

    `current` is the existing Product on edits so min/max can be checked
    against the values that are not being changed.
    """
    errors: list[dict] = []

    price = patch.get("price_cents")
    if price is not None:
        if price < 0:
            errors.append({"field": "price_cents", "message": "price_cents must be >= 0"})
        elif price > MAX_PRICE_CENTS:
            errors.append({"field": "price_cents", "message": f"price_cents cannot exceed {MAX_PRICE_CENTS}"})

    qty = patch.get("stock_quantity")
    if qty is not None and not 0 <= qty <= MAX_STOCK_QUANTITY:
        errors.append({"field": "stock_quantity", "message": f"stock_quantity must be between 0 and {MAX_STOCK_QUANTITY}"})

    min_stock = patch.get("min_stock", current.min_stock if current is not None else 0)
    max_stock = patch.get("max_stock", current.max_stock if current is not None else 100)
    if min_stock is not None and min_stock < 0:
        errors.append({"field": "min_stock", "message": "min_stock must be >= 0"})
    if min_stock is not None and max_stock is not None and max_stock <= min_stock:
        errors.append({"field": "max_stock", "message": "max_stock must be greater than min_stock"})

    if "status" in patch and patch["status"] not in PRODUCT_STATUSES:
        errors.append({"field": "status", "message": f"status must be one of {', '.join(PRODUCT_STATUSES)}"})

    if errors:
        raise ValidationFailed(errors)


def validate_stock_change(*, delta=None, target=None, reason=None) -> tuple[int | None, int | None, str]:
    """
    Normalize a stock change request.

    Exactly one of delta/target must be given. target must be >= 0; the
    service re-checks the delta form against the locked stock level.
    """
    errors: list[dict] = []

    if (delta is None) == (target is None):
        errors.append({"field": "delta", "message": "Provide exactly one of delta or target"})

    if delta is not None:
        try:
            delta = coerce_int(delta, "delta")
            if abs(delta) > MAX_STOCK_QUANTITY:
                errors.append({"field": "delta", "message": "delta is too large"})
        except ValidationFailed as e:
            errors.extend(e.errors)

    if target is not None:
        try:
            target = coerce_int(target, "target")
            if target < 0:
                errors.append({"field": "target", "message": "target must be >= 0"})
            elif target > MAX_STOCK_QUANTITY:
                errors.append({"field": "target", "message": "target is too large"})
        except ValidationFailed as e:
            errors.extend(e.errors)

    reason = str(reason).strip() if reason is not None else ""
    if not reason:
        errors.append({"field": "reason", "message": "reason is required"})
    elif len(reason) > 64:
        errors.append({"field": "reason", "message": "reason exceeds max length 64"})

    if errors:
        raise ValidationFailed(errors)
    return delta, target, reason


def check_sale_request(salesperson, lines) -> tuple[str, list[dict], list[dict]]:
    """
    Shape-check a sale request and collect every problem at once.

    Returns (salesperson, normalized_lines, errors). Each normalized line
    keeps its request position under "index". Product existence is checked
    by the coordinator because it needs the database, and its errors are
    merged into the same list.
    """
    errors: list[dict] = []

    salesperson = str(salesperson).strip() if salesperson is not None else ""
    if not salesperson:
        errors.append({"field": "salesperson", "message": "salesperson is required"})
    elif len(salesperson) > 255:
        errors.append({"field": "salesperson", "message": "salesperson exceeds max length 255"})

    if not isinstance(lines, (list, tuple)) or not lines:
        errors.append({"field": "lines", "message": "at least one line is required"})
        return salesperson, [], errors

    normalized: list[dict] = []
    for i, line in enumerate(lines):
        prefix = f"lines[{i}]"
        if not isinstance(line, dict):
            errors.append({"field": prefix, "message": "line must be an object"})
            continue

        clean: dict = {"index": i}
        for field in ("product_id", "quantity", "unit_price_cents"):
            raw = line.get(field)
            if raw is None:
                errors.append({"field": f"{prefix}.{field}", "message": f"{field} is required"})
                continue
            try:
                clean[field] = coerce_id(raw, field) if field == "product_id" else coerce_int(raw, field)
            except ValidationFailed as e:
                errors.extend({"field": f"{prefix}.{field}", "message": err["message"]} for err in e.errors)

        if "quantity" in clean and clean["quantity"] <= 0:
            errors.append({"field": f"{prefix}.quantity", "message": "quantity must be > 0"})
        elif "quantity" in clean and clean["quantity"] > MAX_STOCK_QUANTITY:
            errors.append({"field": f"{prefix}.quantity", "message": f"quantity cannot exceed {MAX_STOCK_QUANTITY}"})
        if "unit_price_cents" in clean:
            if clean["unit_price_cents"] <= 0:
                errors.append({"field": f"{prefix}.unit_price_cents", "message": "unit_price_cents must be > 0"})
            elif clean["unit_price_cents"] > MAX_PRICE_CENTS:
                errors.append({"field": f"{prefix}.unit_price_cents", "message": f"unit_price_cents cannot exceed {MAX_PRICE_CENTS}"})

        customer = line.get("customer")
        customer = str(customer).strip() if customer is not None else ""
        if not customer:
            errors.append({"field": f"{prefix}.customer", "message": "customer is required"})
        elif len(customer) > 255:
            errors.append({"field": f"{prefix}.customer", "message": "customer exceeds max length 255"})
        clean["customer"] = customer

        normalized.append(clean)

    return salesperson, normalized, errors
