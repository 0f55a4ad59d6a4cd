"""
Reporting tests.

Verifies:
- Sales report counts completed orders only
- Inventory valuation groups stock value by category
- Financial report nets refunds out of sales and subtracts expenses
- Refunds are bounded by what the order was sold for
"""

from datetime import timedelta

import pytest

from poscore.errors import InvalidQuantity, InvalidState
from poscore.services.reporting_service import UNCATEGORIZED, ReportError
from poscore.time_utils import utcnow


@pytest.fixture
def sell(core, make_product, cashier):
    """Complete an order of `quantity` units at `price_cents` and return its id."""
    def _sell(price_cents=1000, quantity=1):
        product = make_product(price_cents=price_cents, initial_stock=quantity)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, quantity)
        core.orders.complete(order.id, cashier)
        return order.id

    return _sell


# =============================================================================
# SALES
# =============================================================================


class TestSalesReport:
    def test_completed_orders_only(self, core, make_product, sell, cashier):
        sell(price_cents=1500)
        sell(price_cents=500, quantity=2)

        product = make_product()
        pending = core.orders.create(cashier)
        core.orders.add_item(pending.id, product.id, 1)
        cancelled = core.orders.create(cashier)
        core.orders.add_item(cancelled.id, product.id, 1)
        core.orders.cancel(cancelled.id)

        report = core.reports.sales_report()

        assert report["total_amount_cents"] == 2500
        assert len(report["rows"]) == 1
        row = report["rows"][0]
        assert row["orders_count"] == 2
        assert row["period"] == utcnow().date().isoformat()

    def test_date_range_is_inclusive(self, core, sell):
        sell(price_cents=700)
        today = utcnow().date()

        report = core.reports.sales_report(today.isoformat(), today.isoformat())

        assert report["total_amount_cents"] == 700
        assert report["start"].endswith("Z")

    def test_range_outside_sales(self, core, sell):
        sell()
        tomorrow = utcnow().date() + timedelta(days=1)

        report = core.reports.sales_report(start=tomorrow)

        assert report["rows"] == []
        assert report["total_amount_cents"] == 0

    def test_start_after_end(self, core):
        with pytest.raises(ReportError):
            core.reports.sales_report("2026-02-01", "2026-01-01")

    def test_unparseable_date(self, core):
        with pytest.raises(ReportError):
            core.reports.sales_report("last tuesday")


# =============================================================================
# INVENTORY VALUATION
# =============================================================================


class TestInventoryValuation:
    def test_groups_by_category(self, core, make_product):
        make_product(category="Drinks", price_cents=200, cost_price_cents=80, initial_stock=10)
        make_product(category="Drinks", price_cents=150, cost_price_cents=None, initial_stock=4)
        make_product(category=None, price_cents=1000, cost_price_cents=500, initial_stock=1)

        report = core.reports.inventory_valuation()

        assert report["categories"]["Drinks"] == {
            "count": 2,
            "units": 14,
            "total_value_cents": 2600,
            "total_cost_cents": 800,
        }
        assert report["categories"][UNCATEGORIZED]["total_value_cents"] == 1000
        assert report["total_value_cents"] == 3600
        assert report["total_cost_cents"] == 1300

    def test_tracks_stock_movements(self, core, make_product, cashier):
        product = make_product(category="Snacks", price_cents=100, initial_stock=10)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 3)

        report = core.reports.inventory_valuation()

        assert report["categories"]["Snacks"]["units"] == 7
        assert report["categories"]["Snacks"]["total_value_cents"] == 700

    def test_empty_catalog(self, core):
        assert core.reports.inventory_valuation() == {
            "categories": {},
            "total_value_cents": 0,
            "total_cost_cents": 0,
        }


# =============================================================================
# FINANCIAL
# =============================================================================


class TestFinancialReport:
    def test_sales_refunds_and_expenses(self, core, sell, cashier):
        first = sell(price_cents=3000)
        sell(price_cents=2000)
        core.finance.record_refund(first, 500, cashier, note="Damaged box")
        core.finance.record_expense(1200, cashier, note="Cleaning supplies")

        report = core.reports.financial_report()

        assert report["gross_sales_cents"] == 5000
        assert report["refunds_cents"] == 500
        assert report["sales_cents"] == 4500
        assert report["expenses_cents"] == 1200
        assert report["profit_cents"] == 3300

    def test_empty_ledger(self, core):
        report = core.reports.financial_report()

        assert report["sales_cents"] == 0
        assert report["profit_cents"] == 0


class TestRefunds:
    def test_refund_capped_at_order_total(self, core, sell, cashier):
        order_id = sell(price_cents=1000)
        core.finance.record_refund(order_id, 600, cashier)

        with pytest.raises(InvalidQuantity) as excinfo:
            core.finance.record_refund(order_id, 500, cashier)

        assert excinfo.value.details["refundable_cents"] == 400

    def test_refund_requires_completed_order(self, core, make_product, cashier):
        product = make_product()
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 1)

        with pytest.raises(InvalidState):
            core.finance.record_refund(order.id, 100, cashier)

    def test_refund_does_not_restock(self, core, make_product, cashier):
        product = make_product(initial_stock=5)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 2)
        core.orders.complete(order.id)

        core.finance.record_refund(order.id, 100, cashier)

        assert core.ledger.current_stock(product.id) == 3

    def test_expense_must_be_positive(self, core, cashier):
        with pytest.raises(InvalidQuantity):
            core.finance.record_expense(0, cashier)
