# Overview: Inventory ledger; the only writer of product stock.

from __future__ import annotations

from typing import Callable, Iterator, Optional

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..errors import InsufficientStock, InvalidQuantity, NotFound, ValidationError
from ..models import InventoryTransaction, Product
from ..models.inventory import VALID_KINDS
from poscore.time_utils import utcnow
from .concurrency import ConcurrencyControl, lock_for_update, product_key
from .storage import StorageHandle, actor_ref
"""
Inventory Ledger Invariants (authoritative)

- inventory_transactions is append-only: no updates, no deletes.
- products.stock_quantity is a cached counter written ONLY by append(), in
  the same DB transaction as the ledger row. Both commit or neither does.
- For every product p, at every commit:
      stock_quantity(p) == initial_stock(p) + SUM(quantity_delta for p)
- A decreasing append is a single conditional UPDATE
  (... WHERE stock_quantity + delta >= 0). There is no separate read
  followed by a write that another writer could interleave with.
- Appends for one product are serialized by the ("product", id) lock.
"""


class InventoryLedger:
    def __init__(self, storage: StorageHandle, concurrency: ConcurrencyControl):
        self.storage = storage
        self.concurrency = concurrency

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(
        self,
        product_id: int,
        delta: int,
        kind: str,
        actor_id=None,
        *,
        note: str | None = None,
        order_id: int | None = None,
        order_item_id: int | None = None,
    ) -> InventoryTransaction:
        """
        Append one stock movement and apply it to the cached counter.

        Raises:
            InvalidQuantity: delta is zero or not an integer
            ValidationError: kind is not a ledger kind
            NotFound: product does not exist
            InsufficientStock: the movement would take stock below zero
            ConcurrentModification: conflicts persisted through every retry
        """
        def _op():
            with self.concurrency.locks.hold(product_key(product_id)):
                with self.storage.transaction() as session:
                    return self.append_locked(
                        session,
                        product_id,
                        delta,
                        kind,
                        actor_id,
                        note=note,
                        order_id=order_id,
                        order_item_id=order_item_id,
                    )

        return self.concurrency.run(_op, label=f"ledger append for product {product_id}")

    def append_locked(
        self,
        session: Session,
        product_id: int,
        delta: int,
        kind: str,
        actor_id=None,
        *,
        note: str | None = None,
        order_id: int | None = None,
        order_item_id: int | None = None,
    ) -> InventoryTransaction:
        """
        Core append without locking, retry or commit.

        The caller must hold the product lock and own the surrounding
        transaction (OrderService does, so that ledger entries and item
        changes commit together).
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise InvalidQuantity(
                "Ledger delta must be a non-zero integer",
                details={"product_id": product_id, "delta": delta},
            )
        if kind not in VALID_KINDS:
            raise ValidationError(
                f"Unknown ledger kind: {kind}. Must be one of {list(VALID_KINDS)}"
            )

        product = (
            lock_for_update(session.query(Product).filter_by(id=product_id))
            .populate_existing()
            .first()
        )
        if product is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})

        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(
                stock_quantity=Product.stock_quantity + delta,
                version_id=Product.version_id + 1,
            )
        )
        if delta < 0:
            stmt = stmt.where(Product.stock_quantity + delta >= 0)

        result = session.execute(stmt, execution_options={"synchronize_session": False})
        if result.rowcount == 0:
            # Counter unchanged; read the value the guard saw for the error payload
            session.refresh(product)
            raise InsufficientStock(
                f"Insufficient stock for product {product_id}",
                details={
                    "product_id": product_id,
                    "requested_quantity": -delta,
                    "on_hand": product.stock_quantity,
                },
            )

        session.refresh(product)

        tx = InventoryTransaction(
            product_id=product_id,
            kind=kind,
            quantity_delta=delta,
            balance_after=product.stock_quantity,
            actor_id=actor_ref(actor_id),
            note=note,
            order_id=order_id,
            order_item_id=order_item_id,
            occurred_at=utcnow(),
        )
        session.add(tx)
        session.flush()

        current_app.logger.info(
            "ledger %s product=%s delta=%+d balance=%d tx=%s",
            kind, product_id, delta, tx.balance_after, tx.id,
        )
        return tx

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current_stock(self, product_id: int) -> int:
        """Cached counter. Equal to replay_stock() by the ledger invariant."""
        qty = self.storage.session.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        ).scalar_one_or_none()
        if qty is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
        return int(qty)

    def replay_stock(self, product_id: int) -> int:
        """Recompute stock from the log: initial_stock + SUM(quantity_delta)."""
        deltas = (
            select(func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0))
            .where(InventoryTransaction.product_id == Product.id)
            .scalar_subquery()
        )
        row = self.storage.session.execute(
            select(Product.initial_stock, deltas).where(Product.id == product_id)
        ).first()
        if row is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
        return int(row[0]) + int(row[1] or 0)

    def verify(self, product_id: Optional[int] = None) -> list[dict]:
        """
        Compare every cached counter with its replay sum.

        Returns one entry per mismatching product; an empty list means the
        ledger and the counters agree.
        """
        deltas = (
            select(func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0))
            .where(InventoryTransaction.product_id == Product.id)
            .scalar_subquery()
        )
        q = select(Product.id, Product.stock_quantity, Product.initial_stock, deltas)
        if product_id is not None:
            q = q.where(Product.id == product_id)

        mismatches = []
        for pid, cached, initial, total_delta in self.storage.session.execute(q.order_by(Product.id)):
            replayed = int(initial) + int(total_delta or 0)
            if replayed != cached:
                mismatches.append({
                    "product_id": pid,
                    "stock_quantity": cached,
                    "replayed_quantity": replayed,
                })
        return mismatches

    def low_stock(
        self,
        predicate: Callable[[Product], bool] | None = None,
        *,
        batch_size: int = 100,
    ) -> Iterator[int]:
        """
        Lazily yield ids of products with stock_quantity <= reorder_threshold.

        Products are fetched in id-ordered batches (keyset pagination), so the
        generator never holds the whole catalog and picks up products
        created while it runs. Calling low_stock() again restarts from the
        beginning.
        """
        last_id = 0
        while True:
            batch = (
                self.storage.session.query(Product)
                .filter(
                    Product.id > last_id,
                    Product.is_active.is_(True),
                    Product.stock_quantity <= Product.reorder_threshold,
                )
                .order_by(Product.id.asc())
                .limit(batch_size)
                .all()
            )
            if not batch:
                return
            for product in batch:
                last_id = product.id
                if predicate is None or predicate(product):
                    yield product.id

    def list_transactions(self, product_id: int, *, limit: int = 200) -> list[InventoryTransaction]:
        if self.storage.session.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
        return (
            self.storage.session.query(InventoryTransaction)
            .filter_by(product_id=product_id)
            .order_by(InventoryTransaction.id.desc())
            .limit(limit)
            .all()
        )
