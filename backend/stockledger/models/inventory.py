from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


PRODUCT_STATUS_ACTIVE = "active"
PRODUCT_STATUS_ARCHIVED = "archived"
PRODUCT_STATUS_INACTIVE = "inactive"
PRODUCT_STATUSES = (PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_ARCHIVED, PRODUCT_STATUS_INACTIVE)


class StockReason:
    """Enumerated causes of a stock movement. Free-text reasons are also accepted."""
    INITIAL_STOCK = "initial-stock"
    SALE = "sale"
    RESTOCK = "restock"
    MANUAL_ADJUSTMENT = "manual-adjustment"
    SALE_CORRECTION = "sale-correction"
    BULK_UPDATE = "bulk-update"


class Product(db.Model):
    """
    Product master data plus the current stock level.

    STOCK DESIGN DECISION:
    stock_quantity is a stored, mutable field (not derived from a sum of
    transactions). Every change goes through stock_service, which writes the
    paired StockHistoryEntry in the same DB transaction, so the history can
    always replay the current quantity.

    inventory_value_cents and stock_trend are denormalized at write time so
    list views never recompute them from history.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_non_negative"),
        db.Index("ix_products_status_name", "status", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    product_type = db.Column(db.String(64), nullable=False, default="UNSPECIFIED")
    unit = db.Column(db.String(32), nullable=False, default="unit")

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=False, default=100)

    # Derived at write time by stock_service
    inventory_value_cents = db.Column(db.Integer, nullable=False, default=0)
    stock_trend = db.Column(db.Float, nullable=False, default=0.0)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    history = db.relationship(
        "StockHistoryEntry",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="StockHistoryEntry.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == PRODUCT_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "product_type": self.product_type,
            "unit": self.unit,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "inventory_value_cents": self.inventory_value_cents,
            "stock_trend": self.stock_trend,
            "last_updated": to_utc_z(self.last_updated),
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockHistoryEntry(db.Model):
    """
    Append-only record of one stock change for one product.

    - Written exactly once per committed mutation, in the same transaction.
    - Never updated; deleted only by cascade from the owning product.
    """
    __tablename__ = "stock_history"
    __table_args__ = (
        db.CheckConstraint(
            "new_quantity = previous_quantity + delta",
            name="ck_stock_history_delta_consistent",
        ),
        db.Index("ix_stock_history_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)
    delta = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(64), nullable=False)
    actor = db.Column(db.String(255), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    # Set when the movement was caused by a sale
    sale_ref = db.Column(db.String(64), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    product = db.relationship("Product", back_populates="history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "delta": self.delta,
            "reason": self.reason,
            "actor": self.actor,
            "note": self.note,
            "sale_ref": self.sale_ref,
            "occurred_at": to_utc_z(self.occurred_at),
        }
