"""
Sale Transaction Coordinator

Records a multi-line sale as one atomic unit: stock debits (one aggregate
mutation per product), their history entries and one SaleLine per request
line commit together or not at all.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, SaleLine, StockReason, SALE_STATUS_COMPLETED
from ..errors import NotFound, ValidationFailed, InvalidState
from ..validation import MAX_STOCK_QUANTITY, ModelValidationPolicy, check_sale_request, validate_payload
from stockledger.time_utils import utcnow
from .allocation import allocate_sale
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .stock_service import _apply_stock_delta_locked, _load_product_locked

logger = logging.getLogger(__name__)

SALE_LINE_EDIT_POLICY = ModelValidationPolicy(
    writable_fields={"customer", "quantity", "unit_price_cents"},
)


@dataclass(frozen=True)
class SaleResult:
    sale_ref: str
    sale_ids: list[int]
    total_amount_cents: int
    lines: list[dict] = field(default_factory=list)
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "sale_ref": self.sale_ref,
            "sale_ids": list(self.sale_ids),
            "total_amount_cents": self.total_amount_cents,
            "lines": list(self.lines),
            "replayed": self.replayed,
        }


def _result_from_lines(lines: list[SaleLine], *, replayed: bool = False) -> SaleResult:
    return SaleResult(
        sale_ref=lines[0].sale_ref,
        sale_ids=[line.id for line in lines],
        total_amount_cents=sum(line.total_cents for line in lines),
        lines=[line.to_dict() for line in lines],
        replayed=replayed,
    )


def _find_by_idempotency_key(idempotency_key: str) -> SaleResult | None:
    lines = (
        db.session.query(SaleLine)
        .filter_by(idempotency_key=idempotency_key)
        .order_by(SaleLine.line_number.asc())
        .all()
    )
    if not lines:
        return None
    return _result_from_lines(lines, replayed=True)


def _validate_products(lines: list[dict], errors: list[dict]) -> None:
    """Existence/status check against current rows, merged into the caller's error list."""
    product_ids = {line["product_id"] for line in lines if "product_id" in line}
    if not product_ids:
        return
    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    }
    for line in lines:
        pid = line.get("product_id")
        if pid is None:
            continue
        product = products.get(pid)
        field_name = f"lines[{line['index']}].product_id"
        if product is None:
            errors.append({"field": field_name, "message": f"Product {pid} not found"})
        elif not product.is_active:
            errors.append({"field": field_name, "message": f"Product \"{product.name}\" is {product.status}"})


def record_sale(
    salesperson: str,
    lines: list[dict],
    *,
    actor: str | None = None,
    idempotency_key: str | None = None,
) -> SaleResult:
    """
    Record a sale of one or more lines, debiting stock atomically.

    Each line: {product_id, customer, quantity, unit_price_cents}.

    Raises ValidationFailed (every problem at once, before any write),
    InsufficientStock (every short product), NotFound (product vanished and
    kept missing across retries) or ConflictAborted.
    """
    if idempotency_key is not None:
        idempotency_key = str(idempotency_key).strip() or None
        if idempotency_key is not None and len(idempotency_key) > 128:
            raise ValidationFailed([{"field": "idempotency_key", "message": "idempotency_key exceeds max length 128"}])
    if idempotency_key:
        existing = _find_by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info("Sale %s replayed for idempotency key %s", existing.sale_ref, idempotency_key)
            return existing

    salesperson, normalized, errors = check_sale_request(salesperson, lines)
    _validate_products(normalized, errors)
    if errors:
        raise ValidationFailed(errors)

    product_ids = sorted({line["product_id"] for line in normalized})

    def _op():
        begin_write_transaction()

        # One locked, consistent read of every referenced product.
        # Ordered by id so concurrent sales lock rows in the same order.
        products = (
            lock_for_update(db.session.query(Product).filter(Product.id.in_(product_ids)))
            .order_by(Product.id.asc())
            .all()
        )
        found = {p.id: p for p in products}
        missing = [pid for pid in product_ids if pid not in found]
        if missing:
            raise NotFound(
                f"Products not found: {', '.join(map(str, missing))}",
                entity_ids=missing,
                retryable=True,
            )

        inactive = [
            {"field": f"lines[{line['index']}].product_id",
             "message": f"Product \"{found[line['product_id']].name}\" is {found[line['product_id']].status}"}
            for line in normalized
            if not found[line["product_id"]].is_active
        ]
        if inactive:
            raise ValidationFailed(inactive)

        allocation = allocate_sale(
            normalized,
            {pid: p.stock_quantity for pid, p in found.items()},
            {pid: p.name for pid, p in found.items()},
        )

        sale_ref = uuid.uuid4().hex
        occurred_at = utcnow()

        for pid, product_allocation in allocation.products.items():
            _apply_stock_delta_locked(
                found[pid],
                delta=-product_allocation.requested,
                reason=StockReason.SALE,
                actor=actor or salesperson,
                note=f"Sale {sale_ref}",
                sale_ref=sale_ref,
                occurred_at=occurred_at,
            )

        sale_lines = []
        for line, line_allocation in zip(normalized, allocation.lines):
            product = found[line["product_id"]]
            sale_line = SaleLine(
                sale_ref=sale_ref,
                line_number=line["index"] + 1,
                product_id=product.id,
                product_name=product.name,
                product_type=product.product_type or "UNSPECIFIED",
                customer=line["customer"],
                salesperson=salesperson,
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                total_cents=line["unit_price_cents"] * line["quantity"],
                previous_stock=line_allocation.previous_stock,
                new_stock=line_allocation.new_stock,
                status=SALE_STATUS_COMPLETED,
                idempotency_key=idempotency_key,
                occurred_at=occurred_at,
            )
            db.session.add(sale_line)
            sale_lines.append(sale_line)

        db.session.flush()
        result = _result_from_lines(sale_lines)
        db.session.commit()
        return result

    try:
        result = run_with_retry(_op, entity_ids=product_ids)
    except IntegrityError as exc:
        # A concurrent call with the same idempotency key won the race.
        if idempotency_key:
            existing = _find_by_idempotency_key(idempotency_key)
            if existing is not None:
                return existing
        raise InvalidState("Sale violated a database constraint", entity_ids=product_ids) from exc

    logger.info(
        "Sale %s recorded by %s: %d lines, total %d cents",
        result.sale_ref, salesperson, len(result.sale_ids), result.total_amount_cents,
    )
    return result


def update_sale_line(sale_line_id: int, patch: dict, *, actor: str | None = None) -> SaleLine:
    """
    Edit one sale line; the total is always recomputed as unit price x quantity.

    A quantity change moves stock by the difference (reason
    'sale-correction') in the same transaction.
    """
    clean = validate_payload(model=SaleLine, payload=patch, policy=SALE_LINE_EDIT_POLICY, partial=True)
    errors = []
    if "quantity" in clean and clean["quantity"] <= 0:
        errors.append({"field": "quantity", "message": "quantity must be > 0"})
    elif "quantity" in clean and clean["quantity"] > MAX_STOCK_QUANTITY:
        errors.append({"field": "quantity", "message": f"quantity cannot exceed {MAX_STOCK_QUANTITY}"})
    if "unit_price_cents" in clean and clean["unit_price_cents"] <= 0:
        errors.append({"field": "unit_price_cents", "message": "unit_price_cents must be > 0"})
    if errors:
        raise ValidationFailed(errors)

    def _op():
        begin_write_transaction()
        line = lock_for_update(db.session.query(SaleLine).filter_by(id=sale_line_id)).first()
        if line is None:
            raise NotFound(f"Sale line {sale_line_id} not found", entity_ids=[sale_line_id])

        new_quantity = clean.get("quantity", line.quantity)
        if new_quantity != line.quantity:
            if line.product_id is None:
                raise ValidationFailed([{
                    "field": "quantity",
                    "message": "Cannot change quantity: the product no longer exists",
                }], entity_ids=[sale_line_id])
            product = _load_product_locked(line.product_id)
            _apply_stock_delta_locked(
                product,
                delta=line.quantity - new_quantity,
                reason=StockReason.SALE_CORRECTION,
                actor=actor,
                note=f"Correction of sale line {line.id}",
                sale_ref=line.sale_ref,
            )
            line.quantity = new_quantity

        if "customer" in clean:
            line.customer = clean["customer"]
        if "unit_price_cents" in clean:
            line.unit_price_cents = clean["unit_price_cents"]
        line.total_cents = line.unit_price_cents * line.quantity

        db.session.commit()
        return line

    line = run_with_retry(_op, entity_ids=[sale_line_id])
    logger.info("Sale line %s edited by %s: %s", sale_line_id, actor or "unknown", ", ".join(sorted(clean)))
    return line


def get_sale(sale_ref: str) -> SaleResult:
    lines = (
        db.session.query(SaleLine)
        .filter_by(sale_ref=sale_ref)
        .order_by(SaleLine.line_number.asc())
        .all()
    )
    if not lines:
        raise NotFound(f"Sale {sale_ref} not found", entity_ids=[sale_ref])
    return _result_from_lines(lines)


def list_sales(limit: int = 100, product_id: int | None = None) -> list[SaleLine]:
    """Sale lines, most recent first."""
    limit = max(1, min(limit, 500))
    q = db.session.query(SaleLine)
    if product_id is not None:
        q = q.filter(SaleLine.product_id == product_id)
    return (
        q.order_by(SaleLine.occurred_at.desc(), SaleLine.id.desc())
        .limit(limit)
        .all()
    )


def sales_summary() -> dict:
    total, count = db.session.query(
        func.coalesce(func.sum(SaleLine.total_cents), 0),
        func.count(SaleLine.id),
    ).one()
    total = int(total or 0)
    return {
        "total_sales_cents": total,
        "total_transactions": count,
        "average_sale_cents": (total // count) if count else 0,
    }
