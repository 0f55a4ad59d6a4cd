"""
Order Service - order aggregate and lifecycle

An order and its items form one consistency unit. Every mutating operation
below is a single atomic unit: the ledger entries, the item rows and the
recomputed totals commit together or not at all.

LOCKING:
- add_item / remove_item: ("product", id) then ("order", id)
- cancel: every product on the order (ascending id) then ("order", id)
- complete / recompute_totals: ("order", id)
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import InvalidQuantity, InvalidState, NotFound, ValidationError
from ..models import Order, OrderItem, Payment, Product
from ..models.inventory import KIND_RETURN, KIND_SALE
from poscore.time_utils import utcnow
from .concurrency import ConcurrencyControl, LockConflict, lock_for_update, order_key, product_key
from .finance_service import FinancialLedger
from .ledger_service import InventoryLedger
from .lifecycle import OrderStatus, require_pending, transition
from .policies import DiscountPolicy, TaxPolicy, no_discount, no_tax
from .storage import StorageHandle, actor_ref


def _require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity("Quantity must be an integer", details={"quantity": quantity})
    if quantity <= 0:
        raise InvalidQuantity("Quantity must be positive", details={"quantity": quantity})
    return quantity


class OrderService:
    def __init__(
        self,
        storage: StorageHandle,
        ledger: InventoryLedger,
        finance: FinancialLedger,
        concurrency: ConcurrencyControl,
        *,
        tax_policy: TaxPolicy = no_tax,
        discount_policy: DiscountPolicy = no_discount,
    ):
        self.storage = storage
        self.ledger = ledger
        self.finance = finance
        self.concurrency = concurrency
        self.tax_policy = tax_policy
        self.discount_policy = discount_policy

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_for_update(self, session: Session, order_id: int) -> Order:
        order = (
            lock_for_update(session.query(Order).filter_by(id=order_id))
            .populate_existing()
            .first()
        )
        if order is None:
            raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
        return order

    def _recompute(self, session: Session, order: Order) -> Order:
        session.flush()
        subtotal = session.query(
            func.coalesce(func.sum(OrderItem.total_price_cents), 0)
        ).filter(OrderItem.order_id == order.id).scalar()

        order.subtotal_cents = int(subtotal or 0)
        order.tax_amount_cents = int(self.tax_policy(order.subtotal_cents))
        gross = order.subtotal_cents + order.tax_amount_cents

        # A discount can zero an order but never push it negative
        discount = int(self.discount_policy(order))
        order.discount_amount_cents = max(0, min(discount, gross))
        order.total_amount_cents = gross - order.discount_amount_cents
        session.flush()
        return order

    def _item_product_ids(self, session: Session, order_id: int) -> list[int]:
        rows = session.query(OrderItem.product_id).filter_by(order_id=order_id).distinct().all()
        return sorted(row[0] for row in rows)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, order_id: int) -> Order:
        order = self.storage.session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
        return order

    def list_items(self, order_id: int) -> list[OrderItem]:
        self.get(order_id)
        return (
            self.storage.session.query(OrderItem)
            .filter_by(order_id=order_id)
            .order_by(OrderItem.id.asc())
            .all()
        )

    def item_ids(self, order_id: int) -> list[int]:
        """The order's items, by identifier, in insertion order."""
        return [item.id for item in self.list_items(order_id)]

    def to_summary(self, order_id: int) -> dict:
        order = self.get(order_id)
        items = self.list_items(order_id)
        return {
            "order": order.to_dict(),
            "items": [item.to_dict() for item in items],
            "item_ids": [item.id for item in items],
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, actor_id=None) -> Order:
        """Create a pending order with zero totals."""
        order = Order(
            status=OrderStatus.PENDING.value,
            subtotal_cents=0,
            tax_amount_cents=0,
            discount_amount_cents=0,
            total_amount_cents=0,
            actor_id=actor_ref(actor_id),
            created_at=utcnow(),
        )
        with self.storage.transaction() as session:
            session.add(order)
        current_app.logger.info("order %s created by %s", order.id, actor_id)
        return order

    def add_item(self, order_id: int, product_id: int, quantity: int, actor_id=None) -> OrderItem:
        """
        Add a line: snapshot the price, deduct stock through the ledger,
        insert the item and recompute totals, all in one transaction.

        Raises:
            InvalidQuantity: quantity is not a positive integer
            NotFound: order or product does not exist
            InvalidState: order is not pending
            ValidationError: product is inactive
            InsufficientStock: quantity exceeds stock at commit time
            ConcurrentModification: conflicts persisted through every retry
        """
        _require_positive_quantity(quantity)

        def _op():
            with self.concurrency.locks.hold(product_key(product_id), order_key(order_id)):
                with self.storage.transaction() as session:
                    order = self._load_for_update(session, order_id)
                    require_pending(order.status, "add items")

                    product = session.get(Product, product_id, populate_existing=True)
                    if product is None:
                        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
                    if not product.is_active:
                        raise ValidationError(
                            f"Product {product_id} is inactive", details={"product_id": product_id}
                        )

                    unit_price_cents = product.price_cents
                    tx = self.ledger.append_locked(
                        session,
                        product_id,
                        -quantity,
                        KIND_SALE,
                        actor_id if actor_id is not None else order.actor_id,
                        note=f"Order {order_id}",
                        order_id=order_id,
                    )

                    item = OrderItem(
                        order_id=order_id,
                        product_id=product_id,
                        quantity=quantity,
                        unit_price_cents=unit_price_cents,
                        total_price_cents=unit_price_cents * quantity,
                        inventory_transaction_id=tx.id,
                        created_at=utcnow(),
                    )
                    session.add(item)
                    self._recompute(session, order)
                    return item

        item = self.concurrency.run(_op, label=f"add item to order {order_id}")
        current_app.logger.info(
            "order %s: added %d x product %s as item %s", order_id, quantity, product_id, item.id
        )
        return item

    def remove_item(self, order_id: int, item_id: int, actor_id=None) -> None:
        """Delete a pending order's item and return its stock through the ledger."""
        def _op():
            # Product id is needed up front to take the product lock first
            located = self.storage.session.query(OrderItem.product_id).filter_by(
                id=item_id, order_id=order_id
            ).first()
            if located is None:
                self.get(order_id)
                raise NotFound(
                    f"Item {item_id} not found on order {order_id}",
                    details={"order_id": order_id, "item_id": item_id},
                )
            product_id = located[0]

            with self.concurrency.locks.hold(product_key(product_id), order_key(order_id)):
                with self.storage.transaction() as session:
                    order = self._load_for_update(session, order_id)
                    require_pending(order.status, "remove items")

                    item = session.query(OrderItem).filter_by(id=item_id, order_id=order_id).first()
                    if item is None:
                        raise NotFound(
                            f"Item {item_id} not found on order {order_id}",
                            details={"order_id": order_id, "item_id": item_id},
                        )

                    self.ledger.append_locked(
                        session,
                        item.product_id,
                        item.quantity,
                        KIND_RETURN,
                        actor_id if actor_id is not None else order.actor_id,
                        note=f"Order {order_id} item removed",
                        order_id=order_id,
                        order_item_id=item.id,
                    )
                    session.delete(item)
                    self._recompute(session, order)

        self.concurrency.run(_op, label=f"remove item {item_id} from order {order_id}")
        current_app.logger.info("order %s: removed item %s", order_id, item_id)

    def recompute_totals(self, order_id: int) -> Order:
        """Re-derive totals from the items with the current policies."""
        def _op():
            with self.concurrency.locks.hold(order_key(order_id)):
                with self.storage.transaction() as session:
                    order = self._load_for_update(session, order_id)
                    require_pending(order.status, "recompute totals")
                    return self._recompute(session, order)

        return self.concurrency.run(_op, label=f"recompute totals for order {order_id}")

    def complete(
        self,
        order_id: int,
        actor_id=None,
        *,
        require_full_payment: bool = False,
        require_items: bool = False,
    ) -> Order:
        """
        pending -> completed, recording one sale in the financial ledger.

        Any pending order can complete; an empty one records a 0-cent sale.
        Callers opt in to stricter checkout rules: require_items refuses
        orders with no items, require_full_payment wants payments that
        cover the total.
        """
        def _op():
            with self.concurrency.locks.hold(order_key(order_id)):
                with self.storage.transaction() as session:
                    order = self._load_for_update(session, order_id)
                    target = transition(order.status, OrderStatus.COMPLETED)

                    if require_items:
                        item_count = session.query(func.count(OrderItem.id)).filter_by(order_id=order_id).scalar()
                        if not item_count:
                            raise InvalidState("Cannot complete an order with no items")
                    if require_full_payment:
                        paid = session.query(
                            func.coalesce(func.sum(Payment.amount_cents), 0)
                        ).filter(Payment.order_id == order_id).scalar()
                        if int(paid or 0) < order.total_amount_cents:
                            raise InvalidState(
                                "Order is not fully paid",
                                details={
                                    "total_amount_cents": order.total_amount_cents,
                                    "total_paid_cents": int(paid or 0),
                                },
                            )

                    order.status = target.value
                    order.completed_at = utcnow()
                    self.finance.record_sale(
                        session, order, actor_id if actor_id is not None else order.actor_id
                    )
                    return order

        order = self.concurrency.run(_op, label=f"complete order {order_id}")
        current_app.logger.info("order %s completed, total=%d", order_id, order.total_amount_cents)
        return order

    def cancel(self, order_id: int, actor_id=None, reason: str | None = None) -> Order:
        """
        pending -> cancelled, returning every item's stock through the ledger.

        Items stay on the order as history; only stock moves back.
        """
        def _op():
            product_ids = self._item_product_ids(self.storage.session, order_id)
            keys = [product_key(pid) for pid in product_ids] + [order_key(order_id)]

            with self.concurrency.locks.hold(*keys):
                with self.storage.transaction() as session:
                    order = self._load_for_update(session, order_id)
                    target = transition(order.status, OrderStatus.CANCELLED)

                    items = (
                        session.query(OrderItem)
                        .filter_by(order_id=order_id)
                        .order_by(OrderItem.id.asc())
                        .all()
                    )
                    if {item.product_id for item in items} - set(product_ids):
                        raise LockConflict(f"items on order {order_id} changed while locking")

                    actor = actor_id if actor_id is not None else order.actor_id
                    for item in items:
                        self.ledger.append_locked(
                            session,
                            item.product_id,
                            item.quantity,
                            KIND_RETURN,
                            actor,
                            note=f"Order {order_id} cancelled",
                            order_id=order_id,
                            order_item_id=item.id,
                        )

                    order.status = target.value
                    order.cancelled_at = utcnow()
                    order.cancel_reason = reason
                    return order

        order = self.concurrency.run(_op, label=f"cancel order {order_id}")
        current_app.logger.info("order %s cancelled: %s", order_id, reason or "no reason given")
        return order
