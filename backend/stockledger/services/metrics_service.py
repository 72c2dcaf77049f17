# Overview: Derived stock metrics; the single home of every display formula.

"""
Derived metrics invariants (authoritative)

- One formula per metric, defined here and nowhere else. Write paths
  (stock_service) and read paths (routes, reports, CLI) both call these.
- The pure functions take a Product (or anything with the same attributes)
  and never touch the session.
- stock_trend is stored at write time; display clamping happens only here
  and never feeds back into storage.
"""
from __future__ import annotations

import math

from flask import current_app, has_app_context

from ..extensions import db
from ..models import Product, PRODUCT_STATUS_ACTIVE

STATUS_OUT_OF_STOCK = "out_of_stock"
STATUS_LOW_STOCK = "low_stock"
STATUS_IN_STOCK = "in_stock"

DEFAULT_TREND_DISPLAY_LIMIT = 100.0


def compute_stock_trend(previous_quantity: int, new_quantity: int) -> float:
    """(new - previous) / previous * 100, or 0 when there was no previous stock."""
    if not previous_quantity:
        return 0.0
    return (new_quantity - previous_quantity) / previous_quantity * 100.0


def compute_inventory_value_cents(price_cents: int | None, quantity: int | None) -> int:
    return (price_cents or 0) * max(quantity or 0, 0)


def stock_trend(product) -> float:
    return float(product.stock_trend or 0.0)


def display_stock_trend(product, limit: float | None = None) -> float:
    if limit is None:
        limit = (
            current_app.config.get("STOCK_TREND_DISPLAY_LIMIT", DEFAULT_TREND_DISPLAY_LIMIT)
            if has_app_context()
            else DEFAULT_TREND_DISPLAY_LIMIT
        )
    return max(-limit, min(limit, stock_trend(product)))


def is_out_of_stock(product) -> bool:
    return (product.stock_quantity or 0) <= 0


def is_low_stock(product) -> bool:
    # min_stock == 0 is never "low" while stock remains; at 0 it is still
    # reported (and is_out_of_stock is also true).
    return (product.stock_quantity or 0) <= (product.min_stock or 0)


def stock_status(product) -> str:
    if is_out_of_stock(product):
        return STATUS_OUT_OF_STOCK
    if is_low_stock(product):
        return STATUS_LOW_STOCK
    return STATUS_IN_STOCK


def inventory_value_cents(product) -> int:
    return compute_inventory_value_cents(product.price_cents, product.stock_quantity)


def stock_percentage(product) -> int:
    max_stock = product.max_stock or 0
    if max_stock <= 0:
        return 0
    ratio = min(1.0, max(0.0, (product.stock_quantity or 0) / max_stock))
    # half-up rounding, not banker's rounding
    return int(math.floor(ratio * 100 + 0.5))


def get_derived_metrics(product) -> dict:
    return {
        "product_id": product.id,
        "trend": stock_trend(product),
        "display_trend": display_stock_trend(product),
        "is_low_stock": is_low_stock(product),
        "is_out_of_stock": is_out_of_stock(product),
        "status": stock_status(product),
        "inventory_value_cents": inventory_value_cents(product),
        "stock_percentage": stock_percentage(product),
    }


def list_low_stock_products() -> list[Product]:
    """Active products at or below their minimum, emptiest first."""
    products = (
        db.session.query(Product)
        .filter(Product.status == PRODUCT_STATUS_ACTIVE)
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .all()
    )
    return [p for p in products if is_low_stock(p)]


def inventory_stats() -> dict:
    """Dashboard totals over active products."""
    products = db.session.query(Product).filter(Product.status == PRODUCT_STATUS_ACTIVE).all()

    total_value = 0
    low_stock_count = 0
    out_of_stock_count = 0
    for p in products:
        total_value += inventory_value_cents(p)
        if is_out_of_stock(p):
            out_of_stock_count += 1
        elif is_low_stock(p):
            low_stock_count += 1

    total_products = len(products)
    return {
        "total_products": total_products,
        "total_value_cents": total_value,
        "low_stock_count": low_stock_count,
        "out_of_stock_count": out_of_stock_count,
        "average_value_cents": (total_value // total_products) if total_products else 0,
    }
