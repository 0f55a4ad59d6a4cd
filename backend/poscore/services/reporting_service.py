# Overview: Read-only reports over orders, stock and the financial ledger.

"""
Reporting never writes and never takes keyed locks. Each report is a
single aggregate statement inside StorageHandle.snapshot(), so it sees
every committed unit of work in full or not at all.

Range bounds are inclusive. Date-only values cover the whole day:
end="2026-03-01" includes everything up to 23:59:59.999999 that day.
"""

from __future__ import annotations

from sqlalchemy import case, func

from ..errors import ValidationError
from ..models import FinancialTransaction, Order, Product
from ..models.finance import FIN_EXPENSE, FIN_REFUND, FIN_SALE
from poscore.time_utils import DateLike, coerce_datetime, to_utc_z
from .lifecycle import OrderStatus
from .storage import StorageHandle

UNCATEGORIZED = "uncategorized"


class ReportError(ValidationError):
    """Raised when report parameters are unusable."""


def _parse_range(start: DateLike, end: DateLike):
    try:
        start_dt = coerce_datetime(start)
        end_dt = coerce_datetime(end, end_of_day=True)
    except ValueError as exc:
        raise ReportError(f"invalid report range: {exc}") from exc
    if start_dt and end_dt and start_dt > end_dt:
        raise ReportError("start must not be after end")
    return start_dt, end_dt


class ReportingService:
    def __init__(self, storage: StorageHandle):
        self.storage = storage

    def sales_report(self, start: DateLike = None, end: DateLike = None) -> dict:
        """Completed orders per UTC day of completion."""
        start_dt, end_dt = _parse_range(start, end)
        period_expr = func.date(Order.completed_at)

        with self.storage.snapshot() as session:
            query = session.query(
                period_expr.label("period"),
                func.count(Order.id).label("orders_count"),
                func.coalesce(func.sum(Order.total_amount_cents), 0).label("total_amount_cents"),
            ).filter(Order.status == OrderStatus.COMPLETED.value)

            if start_dt:
                query = query.filter(Order.completed_at >= start_dt)
            if end_dt:
                query = query.filter(Order.completed_at <= end_dt)

            rows = query.group_by(period_expr).order_by(period_expr).all()

        report_rows = [
            {
                "period": str(row.period),
                "orders_count": int(row.orders_count or 0),
                "total_amount_cents": int(row.total_amount_cents or 0),
            }
            for row in rows
        ]
        return {
            "start": to_utc_z(start_dt) if start_dt else None,
            "end": to_utc_z(end_dt) if end_dt else None,
            "total_amount_cents": sum(r["total_amount_cents"] for r in report_rows),
            "rows": report_rows,
        }

    def inventory_valuation(self) -> dict:
        """Stock value at list price per category."""
        category_expr = func.coalesce(Product.category, UNCATEGORIZED)

        with self.storage.snapshot() as session:
            rows = session.query(
                category_expr.label("category"),
                func.count(Product.id).label("product_count"),
                func.coalesce(func.sum(Product.stock_quantity), 0).label("units"),
                func.coalesce(func.sum(Product.price_cents * Product.stock_quantity), 0).label("total_value_cents"),
                func.coalesce(
                    func.sum(func.coalesce(Product.cost_price_cents, 0) * Product.stock_quantity), 0
                ).label("total_cost_cents"),
            ).group_by(category_expr).order_by(category_expr).all()

        categories = {
            row.category: {
                "count": int(row.product_count or 0),
                "units": int(row.units or 0),
                "total_value_cents": int(row.total_value_cents or 0),
                "total_cost_cents": int(row.total_cost_cents or 0),
            }
            for row in rows
        }
        return {
            "categories": categories,
            "total_value_cents": sum(c["total_value_cents"] for c in categories.values()),
            "total_cost_cents": sum(c["total_cost_cents"] for c in categories.values()),
        }

    def financial_report(self, start: DateLike = None, end: DateLike = None) -> dict:
        """
        Sales, refunds and expenses from the financial ledger.

        sales_cents is net of refunds; profit_cents = sales_cents - expenses_cents.
        """
        start_dt, end_dt = _parse_range(start, end)

        def _sum_of(kind: str):
            return func.coalesce(
                func.sum(case((FinancialTransaction.kind == kind, FinancialTransaction.amount_cents), else_=0)),
                0,
            )

        with self.storage.snapshot() as session:
            query = session.query(
                _sum_of(FIN_SALE).label("gross_sales"),
                _sum_of(FIN_REFUND).label("refunds"),
                _sum_of(FIN_EXPENSE).label("expenses"),
            )
            if start_dt:
                query = query.filter(FinancialTransaction.occurred_at >= start_dt)
            if end_dt:
                query = query.filter(FinancialTransaction.occurred_at <= end_dt)
            row = query.one()

        gross_sales = int(row.gross_sales or 0)
        refunds = int(row.refunds or 0)
        expenses = int(row.expenses or 0)
        sales = gross_sales - refunds
        return {
            "start": to_utc_z(start_dt) if start_dt else None,
            "end": to_utc_z(end_dt) if end_dt else None,
            "gross_sales_cents": gross_sales,
            "refunds_cents": refunds,
            "sales_cents": sales,
            "expenses_cents": expenses,
            "profit_cents": sales - expenses,
        }
