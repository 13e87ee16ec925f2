from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z, utcnow


MOVEMENT_TYPES = ("in", "out", "adjustment", "return")


class StockMovement(db.Model):
    """
    Append-only record of one stock change.

    quantity is the unsigned magnitude; direction follows from movement_type
    (in/return add, out subtracts) or, for adjustments, from
    new_stock - previous_stock. Rows are never updated or deleted; reversing a
    change means appending a compensating movement.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("previous_stock >= 0", name="ck_stock_movements_previous_nonneg"),
        db.CheckConstraint("new_stock >= 0", name="ck_stock_movements_new_nonneg"),
        db.CheckConstraint(
            "movement_type IN ('in', 'out', 'adjustment', 'return')",
            name="ck_stock_movements_type",
        ),
        db.CheckConstraint(
            "(movement_type IN ('in', 'return') AND new_stock = previous_stock + quantity)"
            " OR (movement_type = 'out' AND new_stock = previous_stock - quantity)"
            " OR (movement_type = 'adjustment' AND"
            " (new_stock = previous_stock + quantity OR new_stock = previous_stock - quantity))",
            name="ck_stock_movements_balance",
        ),
        db.Index("ix_stock_movements_product_date", "product_id", "movement_date"),
        db.Index("ix_stock_movements_type_date", "movement_type", "movement_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    # Document number of the causing document, or free text for manual moves
    reference = db.Column(db.String(64), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    movement_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    @property
    def signed_quantity(self) -> int:
        return self.new_stock - self.previous_stock

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} "
            f"type={self.movement_type} {self.previous_stock}->{self.new_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "signed_quantity": self.signed_quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reference": self.reference,
            "reason": self.reason,
            "notes": self.notes,
            "user_id": self.user_id,
            "sale_id": self.sale_id,
            "movement_date": to_utc_z(self.movement_date),
            "created_at": to_utc_z(self.created_at),
        }
