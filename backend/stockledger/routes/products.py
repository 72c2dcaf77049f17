# Overview: Flask API routes for product catalog operations; parses input and returns JSON responses.

# backend/stockledger/routes/products.py
"""
Product catalog routes.

Stock quantity is only accepted on create (the initial stock). Every later
stock change goes through /api/inventory. Service errors are rendered by the
app-level StockLedgerError handler.
"""
from flask import Blueprint, request, g

from ..decorators import with_actor
from ..services import metrics_service
from ..services.products_service import (
    list_products as list_products_service,
    get_product,
    create_product,
    update_product,
    archive_product,
    delete_product,
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _product_with_metrics(product) -> dict:
    rv = product.to_dict()
    rv["metrics"] = metrics_service.get_derived_metrics(product)
    return rv


@products_bp.get("")
def list_products():
    """
    List products, name order.

    Query params:
    - status: active | archived | inactive (optional)
    """
    status = request.args.get("status") or None
    products = list_products_service(status=status)
    return {"items": [_product_with_metrics(p) for p in products], "count": len(products)}


@products_bp.post("")
@with_actor
def create_product_route():
    """Create a product; stock_quantity (default 0) is recorded as initial stock."""
    payload = request.get_json(silent=True) or {}
    created = create_product(payload, actor=g.actor)
    return _product_with_metrics(created), 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    return _product_with_metrics(get_product(product_id))


@products_bp.put("/<int:product_id>")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    updated = update_product(product_id, payload)
    return _product_with_metrics(updated), 200


@products_bp.post("/<int:product_id>/archive")
def archive_product_route(product_id: int):
    return _product_with_metrics(archive_product(product_id)), 200


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    """
    Delete a product.

    Products with sales are archived instead unless ?hard=true is passed.
    """
    hard = request.args.get("hard", "").lower() in ("1", "true", "yes")
    return delete_product(product_id, hard=hard), 200
