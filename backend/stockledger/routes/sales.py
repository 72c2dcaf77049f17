# backend/stockledger/routes/sales.py
"""
Sales routes.

A sale is recorded in one call: every line debits stock in the same
transaction. Clients that may retry after a timeout send an
Idempotency-Key header (or "idempotency_key" in the body) so a repeated
request returns the first result instead of selling twice.
"""
from flask import Blueprint, request, g

from ..decorators import with_actor
from ..services import sales_service
from ..validation import coerce_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
def list_sales_route():
    """
    List sale lines, most recent first.

    Query params:
    - limit: int (default 100, max 500)
    - product_id: int (optional)
    """
    raw_limit = request.args.get("limit")
    raw_product = request.args.get("product_id")
    limit = coerce_int(raw_limit, "limit") if raw_limit is not None else 100
    product_id = coerce_int(raw_product, "product_id") if raw_product is not None else None

    lines = sales_service.list_sales(limit=limit, product_id=product_id)
    return {
        "items": [line.to_dict() for line in lines],
        "count": len(lines),
        "summary": sales_service.sales_summary(),
    }


@sales_bp.post("")
@with_actor
def record_sale_route():
    """
    Record a sale.

    Body:
    {
      "salesperson": "...",
      "lines": [{"product_id": 1, "customer": "...", "quantity": 2, "unit_price_cents": 1299}, ...]
    }

    Returns 201 with the new sale, or 200 when an idempotent replay returns
    an already-recorded sale.
    """
    payload = request.get_json(silent=True) or {}
    idempotency_key = request.headers.get("Idempotency-Key") or payload.get("idempotency_key")

    result = sales_service.record_sale(
        payload.get("salesperson"),
        payload.get("lines"),
        actor=g.actor,
        idempotency_key=idempotency_key,
    )
    return result.to_dict(), (200 if result.replayed else 201)


@sales_bp.get("/<sale_ref>")
def get_sale_route(sale_ref: str):
    return sales_service.get_sale(sale_ref).to_dict()


@sales_bp.patch("/lines/<int:sale_line_id>")
@with_actor
def update_sale_line_route(sale_line_id: int):
    """
    Edit one sale line: customer, quantity and/or unit_price_cents.

    A quantity change moves stock by the difference in the same transaction.
    """
    payload = request.get_json(silent=True) or {}
    line = sales_service.update_sale_line(sale_line_id, payload, actor=g.actor)
    return line.to_dict(), 200
