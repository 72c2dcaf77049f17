# Overview: Stock Mutation Service; applies stock changes with their history entries atomically.

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Product, StockHistoryEntry, StockReason
from ..errors import NotFound, InsufficientStock, InvalidState, ValidationFailed
from ..validation import MAX_STOCK_QUANTITY, validate_stock_change, coerce_id, coerce_int
from stockledger.time_utils import utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .metrics_service import compute_stock_trend, compute_inventory_value_cents

logger = logging.getLogger(__name__)

"""
Stock ledger invariants (authoritative)

- Product.stock_quantity is never negative after a commit.
- Every committed change writes exactly one StockHistoryEntry in the same
  DB transaction; new_quantity = previous_quantity + delta.
- The previous quantity is read under a row lock inside the transaction
  that writes the new one. No caller-side cached value is trusted.
- stock_trend uses metrics_service.compute_stock_trend on every write path
  (single, bulk, sale, correction).
- The service does not clamp. A change that would go below zero is
  rejected, never silently floored.
"""


@dataclass(frozen=True)
class MutationResult:
    product_id: int
    previous_quantity: int
    new_quantity: int
    delta: int
    stock_trend: float
    history_entry_id: int

    def to_dict(self) -> dict:
        return asdict(self)


def _load_product_locked(product_id: int, *, retryable_missing: bool = False) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFound(f"Product {product_id} not found", entity_ids=[product_id], retryable=retryable_missing)
    return product


def _require_mutable_state(product: Product) -> None:
    if product.price_cents is None:
        logger.error("Product %s has no price; refusing stock mutation", product.id)
        raise InvalidState(f"Product {product.id} has no price set", entity_ids=[product.id])
    if product.stock_quantity is None:
        logger.error("Product %s has no stock quantity; refusing stock mutation", product.id)
        raise InvalidState(f"Product {product.id} has no stock quantity", entity_ids=[product.id])


def _append_history_entry(
    *,
    product: Product,
    previous_quantity: int,
    new_quantity: int,
    reason: str,
    actor: str | None,
    occurred_at: datetime,
    note: str | None = None,
    sale_ref: str | None = None,
) -> StockHistoryEntry:
    entry = StockHistoryEntry(
        product=product,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        delta=new_quantity - previous_quantity,
        reason=reason,
        actor=actor,
        note=note,
        sale_ref=sale_ref,
        occurred_at=occurred_at,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _apply_stock_delta_locked(
    product: Product,
    *,
    reason: str,
    delta: int | None = None,
    target: int | None = None,
    actor: str | None = None,
    note: str | None = None,
    sale_ref: str | None = None,
    occurred_at: datetime | None = None,
) -> MutationResult:
    """Core mutation without locking, retry, or commit.

    The caller must already hold the product row lock inside an open
    transaction. Used by apply_stock_delta(), bulk updates and the sale
    coordinator so all of them share one write path.
    """
    _require_mutable_state(product)

    previous = product.stock_quantity
    new = target if target is not None else previous + delta

    if new < 0:
        raise InsufficientStock([{
            "product_id": product.id,
            "product_name": product.name,
            "requested": -(new - previous),
            "available": previous,
            "shortfall": -new,
        }])
    if new > MAX_STOCK_QUANTITY:
        raise ValidationFailed([{
            "field": "delta" if target is None else "target",
            "message": f"stock_quantity cannot exceed {MAX_STOCK_QUANTITY}",
        }], entity_ids=[product.id])

    occurred_at = occurred_at or utcnow()

    product.stock_quantity = new
    product.inventory_value_cents = compute_inventory_value_cents(product.price_cents, new)
    product.stock_trend = compute_stock_trend(previous, new)
    product.last_updated = occurred_at
    db.session.flush()

    entry = _append_history_entry(
        product=product,
        previous_quantity=previous,
        new_quantity=new,
        reason=reason,
        actor=actor,
        note=note,
        sale_ref=sale_ref,
        occurred_at=occurred_at,
    )

    return MutationResult(
        product_id=product.id,
        previous_quantity=previous,
        new_quantity=new,
        delta=new - previous,
        stock_trend=product.stock_trend,
        history_entry_id=entry.id,
    )


def apply_stock_delta(
    product_id: int,
    *,
    reason: str,
    delta: int | None = None,
    target: int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> MutationResult:
    """
    Apply one signed change (or absolute target) to one product's stock.

    Product update and history entry commit together or not at all.
    Raises ValidationFailed, NotFound, InsufficientStock, InvalidState or
    ConflictAborted (retry budget exhausted).
    """
    product_id = coerce_id(product_id, "product_id")
    delta, target, reason = validate_stock_change(delta=delta, target=target, reason=reason)

    def _op():
        begin_write_transaction()
        product = _load_product_locked(product_id)
        result = _apply_stock_delta_locked(
            product,
            reason=reason,
            delta=delta,
            target=target,
            actor=actor,
            note=note,
        )
        db.session.commit()
        return result

    result = run_with_retry(_op, entity_ids=[product_id])
    logger.info(
        "Stock updated for product %s: %s -> %s (%+d, %s) by %s",
        result.product_id, result.previous_quantity, result.new_quantity,
        result.delta, reason, actor or "unknown",
    )
    return result


def restock(product_id: int, quantity: int, *, actor: str | None = None, note: str | None = None) -> MutationResult:
    """Add units to stock (reason 'restock')."""
    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationFailed([{"field": "quantity", "message": "quantity must be > 0 for restock"}])
    return apply_stock_delta(product_id, delta=quantity, reason=StockReason.RESTOCK, actor=actor, note=note)


def set_stock_level(product_id: int, target: int, *, actor: str | None = None, note: str | None = None) -> MutationResult:
    """Set stock to an absolute count (reason 'manual-adjustment')."""
    return apply_stock_delta(product_id, target=target, reason=StockReason.MANUAL_ADJUSTMENT, actor=actor, note=note)


def bulk_update_stock(updates: list[dict], *, actor: str | None = None,
                      reason: str = StockReason.BULK_UPDATE) -> list[MutationResult]:
    """
    Set absolute stock levels for several products in ONE transaction.

    Each product gets its own history entry. Any unknown product or invalid
    target fails the whole batch.
    """
    if not isinstance(updates, (list, tuple)) or not updates:
        raise ValidationFailed([{"field": "updates", "message": "at least one update is required"}])

    errors: list[dict] = []
    targets: dict[int, int] = {}
    for i, update in enumerate(updates):
        if not isinstance(update, dict):
            errors.append({"field": f"updates[{i}]", "message": "update must be an object"})
            continue
        try:
            pid = coerce_id(update.get("product_id"), "product_id")
            _, target, _ = validate_stock_change(target=update.get("target"), reason=reason)
        except ValidationFailed as e:
            errors.extend({"field": f"updates[{i}].{err['field']}", "message": err["message"]} for err in e.errors)
            continue
        if pid in targets:
            errors.append({"field": f"updates[{i}].product_id", "message": "duplicate product in batch"})
            continue
        targets[pid] = target
    if errors:
        raise ValidationFailed(errors)

    product_ids = sorted(targets)

    def _op():
        begin_write_transaction()
        products = (
            lock_for_update(db.session.query(Product).filter(Product.id.in_(product_ids)))
            .order_by(Product.id.asc())
            .all()
        )
        found = {p.id: p for p in products}
        missing = [pid for pid in product_ids if pid not in found]
        if missing:
            raise NotFound(f"Products not found: {', '.join(map(str, missing))}", entity_ids=missing)

        occurred_at = utcnow()
        results = [
            _apply_stock_delta_locked(
                found[pid],
                target=targets[pid],
                reason=reason,
                actor=actor,
                occurred_at=occurred_at,
            )
            for pid in product_ids
        ]
        db.session.commit()
        return results

    results = run_with_retry(_op, entity_ids=product_ids)
    logger.info("Bulk updated stock for %d products by %s", len(results), actor or "unknown")
    return results


def get_stock_history(product_id: int, limit: int | None = None) -> list[StockHistoryEntry]:
    """History for one product, most recent first."""
    if db.session.get(Product, product_id) is None:
        raise NotFound(f"Product {product_id} not found", entity_ids=[product_id])

    default_limit = current_app.config.get("HISTORY_DEFAULT_LIMIT", 50)
    max_limit = current_app.config.get("HISTORY_MAX_LIMIT", 500)
    if limit is None:
        limit = default_limit
    limit = max(1, min(limit, max_limit))

    return (
        db.session.query(StockHistoryEntry)
        .filter_by(product_id=product_id)
        .order_by(StockHistoryEntry.occurred_at.desc(), StockHistoryEntry.id.desc())
        .limit(limit)
        .all()
    )


def replay_history(product_id: int) -> int:
    """Rebuild the quantity by summing history deltas from zero, oldest first."""
    entries = (
        db.session.query(StockHistoryEntry.delta)
        .filter_by(product_id=product_id)
        .order_by(StockHistoryEntry.occurred_at.asc(), StockHistoryEntry.id.asc())
        .all()
    )
    quantity = 0
    for (delta,) in entries:
        quantity += delta
    return quantity


def verify_history(product_id: int) -> dict:
    """
    Compare stored stock against the replayed history.

    Raises InvalidState on mismatch; this is an operator problem, not
    something a caller can retry.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", entity_ids=[product_id])

    replayed = replay_history(product_id)
    if replayed != product.stock_quantity:
        logger.error(
            "History mismatch for product %s: stored=%s replayed=%s",
            product_id, product.stock_quantity, replayed,
        )
        raise InvalidState(
            f"Stock history for product {product_id} replays to {replayed}, stored quantity is {product.stock_quantity}",
            entity_ids=[product_id],
        )
    return {"product_id": product_id, "stock_quantity": product.stock_quantity, "replayed_quantity": replayed}
