"""
Order aggregate tests.

Verifies:
- add_item deducts stock through the ledger and snapshots the price
- Totals are derived from items with the configured tax/discount policies
- cancel returns every item's stock; complete records one sale
- Terminal orders reject all mutations
- A failed operation leaves no partial effects
"""

import pytest

from poscore.core import PosCore
from poscore.errors import InsufficientStock, InvalidQuantity, InvalidState, NotFound, ValidationError
from poscore.models import FinancialTransaction, InventoryTransaction, OrderItem
from poscore.models.finance import FIN_SALE
from poscore.models.inventory import KIND_RETURN, KIND_SALE
from poscore.services.policies import flat_rate_tax, percentage_discount


@pytest.fixture
def taxed_core(db_session):
    """A core with a 10% flat tax."""
    return PosCore(tax_policy=flat_rate_tax(1000))


# =============================================================================
# ADD ITEM
# =============================================================================


class TestAddItem:
    def test_add_item_sequence_against_ten_units(self, core, make_product, cashier):
        product = make_product(initial_stock=10)
        order = core.orders.create(cashier)

        core.orders.add_item(order.id, product.id, 5)
        assert core.ledger.current_stock(product.id) == 5

        with pytest.raises(InsufficientStock):
            core.orders.add_item(order.id, product.id, 6)
        assert core.ledger.current_stock(product.id) == 5

        core.orders.add_item(order.id, product.id, 5)
        assert core.ledger.current_stock(product.id) == 0
        assert len(core.orders.item_ids(order.id)) == 2

    def test_item_references_its_ledger_entry(self, core, make_product, cashier, db_session):
        product = make_product(price_cents=250)
        order = core.orders.create(cashier)

        item = core.orders.add_item(order.id, product.id, 3)

        tx = db_session.get(InventoryTransaction, item.inventory_transaction_id)
        assert tx.kind == KIND_SALE
        assert tx.quantity_delta == -3
        assert tx.order_id == order.id
        assert tx.actor_id == cashier
        assert item.unit_price_cents == 250
        assert item.total_price_cents == 750

    def test_totals_follow_items(self, core, make_product, cashier):
        a = make_product(price_cents=300)
        b = make_product(price_cents=125)
        order = core.orders.create(cashier)

        core.orders.add_item(order.id, a.id, 2)
        core.orders.add_item(order.id, b.id, 4)

        order = core.orders.get(order.id)
        assert order.subtotal_cents == 1100
        assert order.total_amount_cents == 1100

    @pytest.mark.parametrize("quantity", [0, -1, 2.5, True])
    def test_non_positive_quantity_rejected(self, core, make_product, cashier, quantity):
        product = make_product()
        order = core.orders.create(cashier)

        with pytest.raises(InvalidQuantity):
            core.orders.add_item(order.id, product.id, quantity)

        assert core.ledger.current_stock(product.id) == 10

    def test_unknown_order_and_product(self, core, make_product, cashier):
        product = make_product()
        order = core.orders.create(cashier)

        with pytest.raises(NotFound):
            core.orders.add_item(9999, product.id, 1)
        with pytest.raises(NotFound):
            core.orders.add_item(order.id, 9999, 1)

    def test_malformed_ids(self, core, make_product, cashier):
        product = make_product()
        order = core.orders.create(cashier)

        with pytest.raises(NotFound):
            core.orders.add_item(order.id, "not-a-product", 1)
        with pytest.raises(NotFound):
            core.orders.add_item("not-an-order", product.id, 1)

        assert core.ledger.current_stock(product.id) == 10

    def test_inactive_product_rejected(self, core, make_product, cashier, db_session):
        product = make_product()
        product.is_active = False
        db_session.commit()
        order = core.orders.create(cashier)

        with pytest.raises(ValidationError) as excinfo:
            core.orders.add_item(order.id, product.id, 1)

        assert excinfo.value.details == {"product_id": product.id}
        assert core.ledger.current_stock(product.id) == 10
        assert core.orders.get(order.id).status == "pending"

    def test_insufficient_stock_leaves_no_item(self, core, make_product, cashier, db_session):
        product = make_product(initial_stock=2)
        order = core.orders.create(cashier)

        with pytest.raises(InsufficientStock):
            core.orders.add_item(order.id, product.id, 3)

        assert db_session.query(OrderItem).count() == 0
        assert db_session.query(InventoryTransaction).count() == 0
        assert core.orders.get(order.id).total_amount_cents == 0


# =============================================================================
# TOTALS AND POLICIES
# =============================================================================


class TestTotals:
    def test_ten_percent_tax_on_one_hundred(self, taxed_core, make_product, cashier):
        product = make_product(price_cents=2500)
        order = taxed_core.orders.create(cashier)

        taxed_core.orders.add_item(order.id, product.id, 4)

        order = taxed_core.orders.get(order.id)
        assert order.subtotal_cents == 10000
        assert order.tax_amount_cents == 1000
        assert order.total_amount_cents == 11000

    def test_tax_rounds_to_nearest_cent(self, taxed_core, make_product, cashier):
        product = make_product(price_cents=105)
        order = taxed_core.orders.create(cashier)

        taxed_core.orders.add_item(order.id, product.id, 1)

        # 10.5 cents rounds up
        assert taxed_core.orders.get(order.id).tax_amount_cents == 11

    def test_discount_applied_after_tax(self, db_session, make_product, cashier):
        core = PosCore(tax_policy=flat_rate_tax(1000), discount_policy=percentage_discount(2000))
        product = make_product(price_cents=1000)
        order = core.orders.create(cashier)

        core.orders.add_item(order.id, product.id, 1)

        order = core.orders.get(order.id)
        assert order.tax_amount_cents == 100
        assert order.discount_amount_cents == 200
        assert order.total_amount_cents == 900

    def test_discount_never_makes_total_negative(self, db_session, make_product, cashier):
        core = PosCore(discount_policy=lambda order: 10 ** 9)
        product = make_product(price_cents=700)
        order = core.orders.create(cashier)

        core.orders.add_item(order.id, product.id, 1)

        order = core.orders.get(order.id)
        assert order.discount_amount_cents == 700
        assert order.total_amount_cents == 0

    def test_recompute_totals_uses_current_policy(self, core, taxed_core, make_product, cashier):
        product = make_product(price_cents=2000)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 1)
        assert core.orders.get(order.id).tax_amount_cents == 0

        order = taxed_core.orders.recompute_totals(order.id)

        assert order.tax_amount_cents == 200
        assert order.total_amount_cents == 2200


# =============================================================================
# REMOVE ITEM
# =============================================================================


class TestRemoveItem:
    def test_remove_item_restocks_and_recomputes(self, core, make_product, cashier, db_session):
        product = make_product(initial_stock=10, price_cents=100)
        order = core.orders.create(cashier)
        keep = core.orders.add_item(order.id, product.id, 2)
        drop = core.orders.add_item(order.id, product.id, 3)

        core.orders.remove_item(order.id, drop.id, cashier)

        assert core.ledger.current_stock(product.id) == 8
        assert core.orders.item_ids(order.id) == [keep.id]
        assert core.orders.get(order.id).total_amount_cents == 200
        returned = db_session.query(InventoryTransaction).filter_by(kind=KIND_RETURN).one()
        assert returned.order_item_id == drop.id
        assert core.ledger.verify() == []

    def test_remove_unknown_item(self, core, make_product, cashier):
        order = core.orders.create(cashier)

        with pytest.raises(NotFound):
            core.orders.remove_item(order.id, 12345)

    def test_remove_item_from_other_order(self, core, make_product, cashier):
        product = make_product()
        first = core.orders.create(cashier)
        second = core.orders.create(cashier)
        item = core.orders.add_item(first.id, product.id, 1)

        with pytest.raises(NotFound):
            core.orders.remove_item(second.id, item.id)


# =============================================================================
# CANCEL
# =============================================================================


class TestCancel:
    def test_cancel_restores_stock(self, core, make_product, cashier):
        product = make_product(initial_stock=10)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 3)
        assert core.ledger.current_stock(product.id) == 7

        cancelled = core.orders.cancel(order.id, cashier, reason="Customer left")

        assert cancelled.status == "cancelled"
        assert cancelled.cancel_reason == "Customer left"
        assert cancelled.cancelled_at is not None
        assert core.ledger.current_stock(product.id) == 10
        assert core.ledger.verify() == []

    def test_cancel_returns_every_item(self, core, make_product, cashier, db_session):
        a = make_product(initial_stock=5)
        b = make_product(initial_stock=5)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, b.id, 2)
        core.orders.add_item(order.id, a.id, 1)
        core.orders.add_item(order.id, b.id, 1)

        core.orders.cancel(order.id)

        assert core.ledger.current_stock(a.id) == 5
        assert core.ledger.current_stock(b.id) == 5
        assert db_session.query(InventoryTransaction).filter_by(kind=KIND_RETURN).count() == 3
        # items stay as history
        assert len(core.orders.item_ids(order.id)) == 3

    def test_cancel_empty_order(self, core, cashier):
        order = core.orders.create(cashier)

        assert core.orders.cancel(order.id).status == "cancelled"

    def test_cancel_records_no_financial_entry(self, core, make_product, cashier, db_session):
        product = make_product()
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 1)

        core.orders.cancel(order.id)

        assert db_session.query(FinancialTransaction).count() == 0


# =============================================================================
# COMPLETE
# =============================================================================


class TestComplete:
    def test_complete_records_sale(self, core, make_product, cashier, db_session):
        product = make_product(price_cents=450)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 2)

        completed = core.orders.complete(order.id, cashier)

        assert completed.status == "completed"
        assert completed.completed_at is not None
        sale = db_session.query(FinancialTransaction).one()
        assert sale.kind == FIN_SALE
        assert sale.amount_cents == 900
        assert sale.order_id == order.id

    def test_complete_keeps_stock_deducted(self, core, make_product, cashier):
        product = make_product(initial_stock=10)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 4)

        core.orders.complete(order.id)

        assert core.ledger.current_stock(product.id) == 6

    def test_complete_without_payment(self, core, make_product, cashier):
        product = make_product()
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 1)

        assert core.orders.complete(order.id).status == "completed"

    def test_complete_can_require_full_payment(self, core, make_product, cashier):
        product = make_product(price_cents=1000)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 1)
        core.payments.record_payment(order.id, 400, "cash")

        with pytest.raises(InvalidState):
            core.orders.complete(order.id, require_full_payment=True)

        core.payments.record_payment(order.id, 600, "card")
        assert core.orders.complete(order.id, require_full_payment=True).status == "completed"

    def test_complete_empty_order_records_zero_sale(self, core, cashier, db_session):
        order = core.orders.create(cashier)

        completed = core.orders.complete(order.id, cashier)

        assert completed.status == "completed"
        sale = db_session.query(FinancialTransaction).filter_by(order_id=order.id).one()
        assert sale.kind == FIN_SALE
        assert sale.amount_cents == 0

    def test_complete_can_require_items(self, core, cashier, db_session):
        order = core.orders.create(cashier)

        with pytest.raises(InvalidState):
            core.orders.complete(order.id, require_items=True)

        assert core.orders.get(order.id).status == "pending"
        assert db_session.query(FinancialTransaction).count() == 0


# =============================================================================
# TERMINAL STATES
# =============================================================================


class TestTerminalOrders:
    @pytest.fixture(params=["complete", "cancel"])
    def closed_order(self, request, core, make_product, cashier):
        product = make_product(initial_stock=20)
        order = core.orders.create(cashier)
        item = core.orders.add_item(order.id, product.id, 1)
        getattr(core.orders, request.param)(order.id)
        return order.id, item.id, product.id

    def test_rejects_add_item(self, core, closed_order):
        order_id, _, product_id = closed_order
        before = core.ledger.current_stock(product_id)

        with pytest.raises(InvalidState):
            core.orders.add_item(order_id, product_id, 1)

        assert core.ledger.current_stock(product_id) == before

    def test_rejects_remove_item(self, core, closed_order):
        order_id, item_id, _ = closed_order

        with pytest.raises(InvalidState):
            core.orders.remove_item(order_id, item_id)

    def test_rejects_transitions(self, core, closed_order):
        order_id, _, _ = closed_order

        with pytest.raises(InvalidState):
            core.orders.complete(order_id)
        with pytest.raises(InvalidState):
            core.orders.cancel(order_id)

    def test_rejects_payments(self, core, closed_order):
        order_id, _, _ = closed_order

        with pytest.raises(InvalidState):
            core.payments.record_payment(order_id, 100, "cash")

    def test_double_cancel_does_not_restock_twice(self, core, make_product, cashier):
        product = make_product(initial_stock=10)
        order = core.orders.create(cashier)
        core.orders.add_item(order.id, product.id, 4)
        core.orders.cancel(order.id)

        with pytest.raises(InvalidState):
            core.orders.cancel(order.id)

        assert core.ledger.current_stock(product.id) == 10


# =============================================================================
# READS
# =============================================================================


class TestOrderReads:
    def test_summary(self, core, make_product, cashier):
        product = make_product(price_cents=100)
        order = core.orders.create(cashier)
        item = core.orders.add_item(order.id, product.id, 2)

        summary = core.orders.to_summary(order.id)

        assert summary["order"]["status"] == "pending"
        assert summary["order"]["total_amount_cents"] == 200
        assert summary["order"]["created_at"].endswith("Z")
        assert summary["item_ids"] == [item.id]
        assert summary["items"][0]["quantity"] == 2

    def test_get_missing_order(self, core):
        with pytest.raises(NotFound):
            core.orders.get(777)
