from __future__ import annotations

from ..extensions import db
from poscore.time_utils import to_utc_z

# Ledger entry kinds
KIND_PURCHASE = "purchase"
KIND_SALE = "sale"
KIND_RETURN = "return"
KIND_ADJUSTMENT = "adjustment"

VALID_KINDS = (KIND_PURCHASE, KIND_SALE, KIND_RETURN, KIND_ADJUSTMENT)


class Product(db.Model):
    """
    Product master data.

    STOCK OWNERSHIP:
    stock_quantity is a cached counter. The inventory ledger is the only
    writer; it updates the counter in the same DB transaction that inserts
    the InventoryTransaction row, so at every commit:

        stock_quantity == initial_stock + SUM(inventory_transactions.quantity_delta)

    Never assign stock_quantity from application code. Use
    InventoryLedger.append() (or ProductCatalog.adjust_stock()).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_category_name", "category", "name"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=True, index=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    # Opening balance; the ledger replays on top of it
    initial_stock = db.Column(db.Integer, nullable=False, default=0)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    reorder_threshold = db.Column(db.Integer, nullable=False, default=0)

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

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.reorder_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "initial_stock": self.initial_stock,
            "stock_quantity": self.stock_quantity,
            "reorder_threshold": self.reorder_threshold,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """Append-only stock movement. Rows are never updated or deleted."""
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_product_occurred", "product_id", "occurred_at"),
        db.CheckConstraint("quantity_delta <> 0", name="ck_invtx_delta_non_zero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    # Counter value right after this entry was applied
    balance_after = db.Column(db.Integer, nullable=False)

    actor_id = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    # Order references are lookup keys only
    order_id = db.Column(db.Integer, nullable=True, index=True)
    order_item_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "kind": self.kind,
            "quantity_delta": self.quantity_delta,
            "balance_after": self.balance_after,
            "actor_id": self.actor_id,
            "note": self.note,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
