# backend/stockledger/services/products_service.py
"""
Catalog management for products.

Stock quantity is only writable at creation (the initial stock, recorded as
an 'initial-stock' history entry in the same transaction). Afterwards every
stock change goes through stock_service.
"""
from __future__ import annotations

import logging

from ..extensions import db
from ..models import (
    Product,
    SaleLine,
    StockReason,
    PRODUCT_STATUS_ARCHIVED,
    PRODUCT_STATUSES,
)
from ..errors import NotFound, ValidationFailed
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_product
from stockledger.time_utils import utcnow
from .stock_service import _append_history_entry
from .metrics_service import compute_inventory_value_cents

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {"name", "product_type", "unit", "price_cents", "min_stock", "max_stock", "status"}

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_MUTABLE_FIELDS | {"stock_quantity"},
    required_on_create={"name", "price_cents"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_MUTABLE_FIELDS,
)


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", entity_ids=[product_id])
    return product


def list_products(status: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if status is not None:
        if status not in PRODUCT_STATUSES:
            raise ValidationFailed([{"field": "status", "message": f"status must be one of {', '.join(PRODUCT_STATUSES)}"}])
        q = q.filter(Product.status == status)
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def create_product(payload: dict, *, actor: str | None = None) -> Product:
    """
    Create a product with its initial stock.

    The product row and its 'initial-stock' history entry (0 -> quantity)
    are committed together.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
    enforce_rules_product(patch)

    initial_quantity = patch.pop("stock_quantity", None) or 0
    now = utcnow()

    try:
        p = Product(stock_quantity=initial_quantity, stock_trend=0.0, last_updated=now)
        apply_product_patch(p, patch)
        p.inventory_value_cents = compute_inventory_value_cents(p.price_cents, initial_quantity)
        db.session.add(p)
        db.session.flush()  # ensure p.id exists before the history entry

        _append_history_entry(
            product=p,
            previous_quantity=0,
            new_quantity=initial_quantity,
            reason=StockReason.INITIAL_STOCK,
            actor=actor,
            occurred_at=now,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Created product %s (%s) with initial stock %s", p.id, p.name, initial_quantity)
    return p


def update_product(product_id: int, payload: dict) -> Product:
    """Edit catalog attributes. Stock quantity is not writable here."""
    if isinstance(payload, dict) and "stock_quantity" in payload:
        raise ValidationFailed([{
            "field": "stock_quantity",
            "message": "stock_quantity cannot be edited directly; use a stock adjustment",
        }])
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)

    try:
        p = get_product(product_id)
        enforce_rules_product(patch, current=p)
        apply_product_patch(p, patch)
        if "price_cents" in patch:
            p.inventory_value_cents = compute_inventory_value_cents(p.price_cents, p.stock_quantity)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Updated product %s: %s", product_id, ", ".join(sorted(patch.keys())))
    return p


def archive_product(product_id: int) -> Product:
    """Soft-delete: keeps the row so history and sale references stay intact."""
    p = get_product(product_id)
    if p.status != PRODUCT_STATUS_ARCHIVED:
        p.status = PRODUCT_STATUS_ARCHIVED
        db.session.commit()
        logger.info("Archived product %s (%s)", p.id, p.name)
    return p


def has_sales(product_id: int) -> bool:
    return db.session.query(SaleLine.id).filter(SaleLine.product_id == product_id).first() is not None


def delete_product(product_id: int, *, hard: bool = False) -> dict:
    """
    Remove a product.

    Products with sales are archived unless hard=True. A hard delete cascades
    the stock history and detaches sale lines (product_id -> NULL); their
    name/type snapshot survives.
    """
    p = get_product(product_id)

    if has_sales(product_id) and not hard:
        archive_product(product_id)
        return {"product_id": product_id, "archived": True, "deleted": False}

    try:
        db.session.query(SaleLine).filter(SaleLine.product_id == product_id).update(
            {SaleLine.product_id: None}, synchronize_session=False
        )
        db.session.delete(p)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Deleted product %s", product_id)
    return {"product_id": product_id, "archived": False, "deleted": True}
