# Overview: Accounting ledger of sales, refunds and expenses.

"""
Financial Ledger

DESIGN PRINCIPLES:
- Append-only: entries are never updated or deleted; corrections are new
  entries (a refund against a sale, not an edit of the sale).
- Separate from the inventory ledger: nothing here moves stock.
- Amounts are cents and never negative; the kind carries the sign for
  reporting. Only a sale of a fully discounted order may be zero.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import InvalidQuantity, InvalidState, NotFound, ValidationError
from ..models import FinancialTransaction, Order
from ..models.finance import FIN_EXPENSE, FIN_REFUND, FIN_SALE, VALID_FINANCIAL_KINDS
from poscore.time_utils import utcnow
from .concurrency import ConcurrencyControl, lock_for_update, order_key
from .lifecycle import OrderStatus
from .storage import StorageHandle, actor_ref


def _require_positive_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidQuantity("Amount must be an integer number of cents")
    if amount_cents <= 0:
        raise InvalidQuantity("Amount must be positive", details={"amount_cents": amount_cents})
    return amount_cents


class FinancialLedger:
    def __init__(self, storage: StorageHandle, concurrency: ConcurrencyControl):
        self.storage = storage
        self.concurrency = concurrency

    def record(
        self,
        session: Session,
        kind: str,
        amount_cents: int,
        actor_id=None,
        *,
        order_id: int | None = None,
        note: str | None = None,
    ) -> FinancialTransaction:
        """Append an entry inside the caller's transaction (no commit)."""
        if kind not in VALID_FINANCIAL_KINDS:
            raise ValidationError(
                f"Unknown financial kind: {kind}. Must be one of {list(VALID_FINANCIAL_KINDS)}"
            )
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents < 0:
            raise InvalidQuantity("Amount must be a non-negative integer number of cents")
        if kind != FIN_SALE:
            _require_positive_amount(amount_cents)

        entry = FinancialTransaction(
            kind=kind,
            amount_cents=amount_cents,
            order_id=order_id,
            actor_id=actor_ref(actor_id),
            note=note,
            occurred_at=utcnow(),
        )
        session.add(entry)
        session.flush()
        current_app.logger.info(
            "finance %s amount=%d order=%s entry=%s", kind, amount_cents, order_id, entry.id
        )
        return entry

    def record_expense(self, amount_cents: int, actor_id=None, note: str | None = None) -> FinancialTransaction:
        with self.storage.transaction() as session:
            return self.record(session, FIN_EXPENSE, amount_cents, actor_id, note=note)

    def record_refund(
        self,
        order_id: int,
        amount_cents: int,
        actor_id=None,
        note: str | None = None,
    ) -> FinancialTransaction:
        """
        Refund money against a completed order.

        Accounting only: stock and order status are untouched. The running
        total of refunds can never exceed what the order was sold for.
        """
        _require_positive_amount(amount_cents)

        def _op():
            with self.concurrency.locks.hold(order_key(order_id)):
                with self.storage.transaction() as session:
                    order = lock_for_update(session.query(Order).filter_by(id=order_id)).first()
                    if order is None:
                        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
                    if order.status != OrderStatus.COMPLETED.value:
                        raise InvalidState(
                            "Refunds can only be recorded against completed orders",
                            details={"status": order.status},
                        )

                    refunded = session.query(
                        func.coalesce(func.sum(FinancialTransaction.amount_cents), 0)
                    ).filter(
                        FinancialTransaction.order_id == order_id,
                        FinancialTransaction.kind == FIN_REFUND,
                    ).scalar()
                    refundable = order.total_amount_cents - int(refunded or 0)
                    if amount_cents > refundable:
                        raise InvalidQuantity(
                            "Refund exceeds the order's remaining refundable amount",
                            details={"refundable_cents": refundable, "amount_cents": amount_cents},
                        )
                    return self.record(session, FIN_REFUND, amount_cents, actor_id, order_id=order_id, note=note)

        return self.concurrency.run(_op, label=f"refund for order {order_id}")

    def record_sale(self, session: Session, order: Order, actor_id=None) -> FinancialTransaction:
        """Sale entry for a just-completed order, one per completion."""
        return self.record(
            session,
            FIN_SALE,
            order.total_amount_cents,
            actor_id,
            order_id=order.id,
            note=f"Order {order.id} completed",
        )
