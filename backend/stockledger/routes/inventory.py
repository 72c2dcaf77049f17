# backend/stockledger/routes/inventory.py
"""
Inventory routes: stock adjustments, restocks, bulk updates, history and
derived metrics.

Time semantics:
- History timestamps are UTC and serialized with a trailing Z.
- History is listed most recent first; limit is clamped server-side.
"""
from flask import Blueprint, request, g

from ..decorators import with_actor
from ..errors import ValidationFailed
from ..models import StockReason
from ..services import metrics_service, stock_service
from ..services.products_service import get_product
from ..validation import coerce_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _mutation_response(result):
    product = get_product(result.product_id)
    return {
        "mutation": result.to_dict(),
        "product": product.to_dict(),
        "metrics": metrics_service.get_derived_metrics(product),
    }


@inventory_bp.post("/<int:product_id>/adjust")
@with_actor
def adjust_stock_route(product_id: int):
    """
    Apply a stock change to one product.

    Body: {"delta": int} or {"target": int}, plus optional "reason"
    (default 'manual-adjustment') and "note".
    """
    payload = request.get_json(silent=True) or {}
    result = stock_service.apply_stock_delta(
        product_id,
        delta=payload.get("delta"),
        target=payload.get("target"),
        reason=payload.get("reason") or StockReason.MANUAL_ADJUSTMENT,
        actor=g.actor,
        note=payload.get("note"),
    )
    return _mutation_response(result), 200


@inventory_bp.post("/<int:product_id>/restock")
@with_actor
def restock_route(product_id: int):
    """Body: {"quantity": int > 0, "note": optional}."""
    payload = request.get_json(silent=True) or {}
    if "quantity" not in payload:
        raise ValidationFailed([{"field": "quantity", "message": "quantity is required"}])
    result = stock_service.restock(product_id, payload["quantity"], actor=g.actor, note=payload.get("note"))
    return _mutation_response(result), 200


@inventory_bp.post("/bulk")
@with_actor
def bulk_update_route():
    """Body: {"updates": [{"product_id": int, "target": int}, ...]}; all or nothing."""
    payload = request.get_json(silent=True) or {}
    results = stock_service.bulk_update_stock(payload.get("updates"), actor=g.actor)
    return {"items": [r.to_dict() for r in results], "count": len(results)}, 200


@inventory_bp.get("/<int:product_id>/history")
def stock_history_route(product_id: int):
    raw_limit = request.args.get("limit")
    limit = coerce_int(raw_limit, "limit") if raw_limit is not None else None
    entries = stock_service.get_stock_history(product_id, limit=limit)
    return {"product_id": product_id, "items": [e.to_dict() for e in entries], "count": len(entries)}


@inventory_bp.get("/<int:product_id>/metrics")
def metrics_route(product_id: int):
    return metrics_service.get_derived_metrics(get_product(product_id))


@inventory_bp.get("/low-stock")
def low_stock_route():
    products = metrics_service.list_low_stock_products()
    return {
        "items": [
            {**p.to_dict(), "metrics": metrics_service.get_derived_metrics(p)}
            for p in products
        ],
        "count": len(products),
    }


@inventory_bp.get("/stats")
def stats_route():
    return metrics_service.inventory_stats()
