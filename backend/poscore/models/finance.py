from __future__ import annotations

from ..extensions import db
from poscore.time_utils import to_utc_z

FIN_SALE = "sale"
FIN_EXPENSE = "expense"
FIN_REFUND = "refund"

VALID_FINANCIAL_KINDS = (FIN_SALE, FIN_EXPENSE, FIN_REFUND)


class FinancialTransaction(db.Model):
    """
    Accounting ledger entry, separate from the inventory ledger.

    Append-only. amount_cents is never negative; the kind decides the sign
    when reports aggregate.
    """
    __tablename__ = "financial_transactions"
    __table_args__ = (
        db.Index("ix_fintx_kind_occurred", "kind", "occurred_at"),
        db.CheckConstraint("amount_cents >= 0", name="ck_fintx_amount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    actor_id = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "order_id": self.order_id,
            "actor_id": self.actor_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
