from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import StockLedgerViolation
from stockledger.time_utils import to_utc_z


_ledger_write_allowed: ContextVar[bool] = ContextVar("ledger_write_allowed", default=False)


@contextmanager
def ledger_write_scope():
    """
    Open a window in which Product.current_stock may be assigned.

    Only the stock ledger enters this scope. Outside of it, assigning
    current_stock on a persisted product raises StockLedgerViolation.
    """
    token = _ledger_write_allowed.set(True)
    try:
        yield
    finally:
        _ledger_write_allowed.reset(token)


class Product(db.Model):
    """
    Product master data plus the authoritative stock counter.

    STOCK INVARIANT:
    current_stock always equals the opening balance plus the signed sum of the
    product's stock_movements. It is written only by the stock ledger, which
    appends the matching StockMovement in the same transaction.

    The opening balance is the value the row is created with; every later
    change goes through the ledger.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_products_current_stock_nonneg"),
        db.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_nonneg"),
        db.UniqueConstraint("reference", name="uq_products_reference"),
        db.Index("ix_products_active_stock", "is_active", "current_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    # Optional internal code (SKU-like); unique when present
    reference = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(32), nullable=False, default="piece")

    # Authoritative storage in cents
    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @validates("current_stock")
    def _guard_current_stock(self, key, value):
        # New rows carry their opening balance; persisted rows belong to the ledger.
        if self.id is not None and not _ledger_write_allowed.get():
            raise StockLedgerViolation(
                f"Product {self.id}: current_stock may only be changed through the stock ledger"
            )
        return value

    @property
    def is_low_stock(self) -> bool:
        return (self.current_stock or 0) <= (self.min_stock or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "reference": self.reference,
            "description": self.description,
            "unit": self.unit,
            "purchase_price_cents": self.purchase_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "current_stock": self.current_stock,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
