# Overview: Sale allocation; groups sale lines per product and synthesizes per-line stock snapshots.

"""
Allocation rule:

1. Group lines by product (first-appearance order) and sum the requested
   quantity per product.
2. Check every sum against ONE snapshot of stock levels. Any shortfall fails
   the whole sale, listing every short product.
3. For each product, walk its lines in request order and hand out
   previous/new stock snapshots running down from the snapshot level, so
   no two lines of one product show overlapping ranges.

Pure functions: no session, no clock. The coordinator passes in the stock
levels it read under lock.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import InsufficientStock


@dataclass(frozen=True)
class LineAllocation:
    line_index: int
    product_id: int
    quantity: int
    previous_stock: int
    new_stock: int


@dataclass(frozen=True)
class ProductAllocation:
    product_id: int
    available: int
    requested: int
    line_indexes: tuple[int, ...]

    @property
    def remaining(self) -> int:
        return self.available - self.requested


@dataclass
class SaleAllocation:
    products: dict[int, ProductAllocation] = field(default_factory=dict)
    lines: list[LineAllocation] = field(default_factory=list)

    def debit_for(self, product_id: int) -> int:
        return self.products[product_id].requested


def group_by_product(lines: list[dict]) -> dict[int, list[int]]:
    """Map product_id -> indexes of its lines, in first-appearance order."""
    grouped: dict[int, list[int]] = {}
    for i, line in enumerate(lines):
        grouped.setdefault(line["product_id"], []).append(i)
    return grouped


def allocate_sale(
    lines: list[dict],
    stock_levels: dict[int, int],
    product_names: dict[int, str] | None = None,
) -> SaleAllocation:
    product_names = product_names or {}
    grouped = group_by_product(lines)

    shortages = []
    products: dict[int, ProductAllocation] = {}
    for product_id, indexes in grouped.items():
        requested = sum(lines[i]["quantity"] for i in indexes)
        available = stock_levels.get(product_id, 0)
        if requested > available:
            shortages.append({
                "product_id": product_id,
                "product_name": product_names.get(product_id, f"product {product_id}"),
                "requested": requested,
                "available": available,
                "shortfall": requested - available,
            })
        products[product_id] = ProductAllocation(
            product_id=product_id,
            available=available,
            requested=requested,
            line_indexes=tuple(indexes),
        )

    if shortages:
        raise InsufficientStock(shortages)

    by_index: dict[int, LineAllocation] = {}
    for product_id, allocation in products.items():
        running = allocation.available
        for i in allocation.line_indexes:
            qty = lines[i]["quantity"]
            by_index[i] = LineAllocation(
                line_index=i,
                product_id=product_id,
                quantity=qty,
                previous_stock=running,
                new_stock=running - qty,
            )
            running -= qty

    return SaleAllocation(
        products=products,
        lines=[by_index[i] for i in range(len(lines))],
    )
