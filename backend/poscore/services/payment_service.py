# Overview: Payment recording against pending orders.

"""
Payment Recording

DESIGN PRINCIPLES:
- Payments are separate from orders (many-to-one relationship)
- Split payments: one order can have multiple payments
- Partial payments are allowed; completion is an explicit, separate call
- Recording a payment never touches inventory and never changes order status
- Append-only: payments are never edited or deleted
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import InvalidQuantity, NotFound, ValidationError
from ..models import Order, Payment
from poscore.time_utils import utcnow
from .concurrency import ConcurrencyControl, lock_for_update, order_key
from .lifecycle import require_pending
from .storage import StorageHandle, actor_ref


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_CHECK = "check"
METHOD_GIFT_CARD = "gift_card"
METHOD_STORE_CREDIT = "store_credit"

VALID_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_CHECK,
    METHOD_GIFT_CARD,
    METHOD_STORE_CREDIT,
]


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_UNPAID = "UNPAID"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"
PAYMENT_STATUS_OVERPAID = "OVERPAID"


def _payment_status(total_due: int, total_paid: int) -> str:
    if total_paid <= 0:
        return PAYMENT_STATUS_UNPAID if total_due > 0 else PAYMENT_STATUS_PAID
    if total_paid < total_due:
        return PAYMENT_STATUS_PARTIAL
    if total_paid == total_due:
        return PAYMENT_STATUS_PAID
    return PAYMENT_STATUS_OVERPAID


class PaymentService:
    def __init__(self, storage: StorageHandle, concurrency: ConcurrencyControl):
        self.storage = storage
        self.concurrency = concurrency

    def record_payment(
        self,
        order_id: int,
        amount_cents: int,
        method: str,
        notes: str | None = None,
        actor_id=None,
    ) -> Payment:
        """
        Attach a payment to a pending order.

        Args:
            order_id: Order being paid
            amount_cents: Amount tendered (in cents, positive)
            method: cash, card, check, gift_card, store_credit
            notes: Card auth code, check number, etc. (optional)
            actor_id: Who took the payment (optional)

        Raises:
            InvalidQuantity: amount is not a positive integer
            ValidationError: unknown payment method
            NotFound: order does not exist
            InvalidState: order is not pending
        """
        if method not in VALID_METHODS:
            raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise InvalidQuantity("Payment amount must be a positive integer", details={"amount_cents": amount_cents})

        def _op():
            with self.concurrency.locks.hold(order_key(order_id)):
                with self.storage.transaction() as session:
                    order = (
                        lock_for_update(session.query(Order).filter_by(id=order_id))
                        .populate_existing()
                        .first()
                    )
                    if order is None:
                        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
                    require_pending(order.status, "record a payment")

                    payment = Payment(
                        order_id=order_id,
                        amount_cents=amount_cents,
                        method=method,
                        notes=notes,
                        actor_id=actor_ref(actor_id),
                        created_at=utcnow(),
                    )
                    session.add(payment)
                    session.flush()
                    return payment

        payment = self.concurrency.run(_op, label=f"payment on order {order_id}")
        current_app.logger.info(
            "payment %s: %d cents by %s on order %s", payment.id, amount_cents, method, order_id
        )
        return payment

    def list_payments(self, order_id: int) -> list[Payment]:
        """Payments for an order, oldest first."""
        if self.storage.session.get(Order, order_id) is None:
            raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
        return (
            self.storage.session.query(Payment)
            .filter_by(order_id=order_id)
            .order_by(Payment.created_at.asc(), Payment.id.asc())
            .all()
        )

    def payment_summary(self, order_id: int) -> dict:
        """
        Totals for an order's payments.

        balance_cents is what is still due (negative when overpaid).
        """
        order = self.storage.session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})

        total_paid = self.storage.session.query(
            func.coalesce(func.sum(Payment.amount_cents), 0)
        ).filter(Payment.order_id == order_id).scalar()
        total_paid = int(total_paid or 0)
        total_due = order.total_amount_cents

        return {
            "order_id": order_id,
            "total_due_cents": total_due,
            "total_paid_cents": total_paid,
            "balance_cents": total_due - total_paid,
            "payment_status": _payment_status(total_due, total_paid),
        }
