from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


SALE_STATUS_COMPLETED = "completed"


class SaleLine(db.Model):
    """
    One line item of a completed sale.

    A sale is not its own table: the lines of one sale share sale_ref,
    salesperson and occurred_at. product_id is a weak reference; the
    name/type snapshot keeps the line readable after the product is deleted.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_ref", "line_number", name="uq_sale_lines_ref_line"),
        db.UniqueConstraint("idempotency_key", "line_number", name="uq_sale_lines_idempotency_line"),
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint("total_cents = unit_price_cents * quantity", name="ck_sale_lines_total"),
        db.Index("ix_sale_lines_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_ref = db.Column(db.String(64), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
    )
    product_name = db.Column(db.String(255), nullable=False)
    product_type = db.Column(db.String(64), nullable=False, default="UNSPECIFIED")

    customer = db.Column(db.String(255), nullable=False)
    salesperson = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    # Sequential stock snapshot for this line within its product's allocation
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED)
    idempotency_key = db.Column(db.String(128), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_ref": self.sale_ref,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_type": self.product_type,
            "customer": self.customer,
            "salesperson": self.salesperson,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "status": self.status,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
