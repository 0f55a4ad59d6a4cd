# backend/poscore/services/catalog_service.py
"""
Product Catalog

Master data only. The catalog never writes stock_quantity: new products get
their opening balance in initial_stock (mirrored into the counter at insert
time), and every later change goes through InventoryLedger.append().
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, ValidationError
from ..models import InventoryTransaction, Product
from ..models.inventory import KIND_ADJUSTMENT
from .concurrency import ConcurrencyControl, lock_for_update, product_key
from .ledger_service import InventoryLedger
from .storage import StorageHandle


def _require_non_negative_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < 0:
        raise ValidationError(f"{name} cannot be negative")
    return value


class ProductCatalog:
    def __init__(
        self,
        storage: StorageHandle,
        ledger: InventoryLedger,
        concurrency: ConcurrencyControl,
    ):
        self.storage = storage
        self.ledger = ledger
        self.concurrency = concurrency

    def create(
        self,
        *,
        sku: str,
        name: str,
        price_cents: int,
        cost_price_cents: int | None = None,
        initial_stock: int = 0,
        reorder_threshold: int = 0,
        category: str | None = None,
    ) -> Product:
        sku = (sku or "").strip()
        name = (name or "").strip()
        if not sku:
            raise ValidationError("sku is required")
        if not name:
            raise ValidationError("name is required")
        _require_non_negative_int("price_cents", price_cents)
        if cost_price_cents is not None:
            _require_non_negative_int("cost_price_cents", cost_price_cents)
        _require_non_negative_int("initial_stock", initial_stock)
        _require_non_negative_int("reorder_threshold", reorder_threshold)

        product = Product(
            sku=sku,
            name=name,
            category=(category or None),
            price_cents=price_cents,
            cost_price_cents=cost_price_cents,
            initial_stock=initial_stock,
            stock_quantity=initial_stock,
            reorder_threshold=reorder_threshold,
            is_active=True,
        )
        try:
            with self.storage.transaction() as session:
                session.add(product)
        except IntegrityError as exc:
            raise ValidationError(f"SKU {sku} already exists", details={"sku": sku}) from exc

        current_app.logger.info("catalog created product %s sku=%s stock=%d", product.id, sku, initial_stock)
        return product

    def get(self, product_id: int) -> Product:
        product = self.storage.session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
        return product

    def list_products(self, *, category: str | None = None, include_inactive: bool = False) -> list[Product]:
        query = self.storage.session.query(Product)
        if category is not None:
            query = query.filter(Product.category == category)
        if not include_inactive:
            query = query.filter(Product.is_active.is_(True))
        return query.order_by(Product.name.asc(), Product.id.asc()).all()

    def update_price(self, product_id: int, price_cents: int) -> Product:
        """
        Change the list price. Existing order items keep their snapshot.

        Uses the product's version_id: if a writer in another process bumps the row
        between load and flush, StaleDataError triggers a retry.
        """
        _require_non_negative_int("price_cents", price_cents)

        def _op():
            with self.concurrency.locks.hold(product_key(product_id)):
                with self.storage.transaction() as session:
                    product = (
                        lock_for_update(session.query(Product).filter_by(id=product_id))
                        .populate_existing()
                        .first()
                    )
                    if product is None:
                        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
                    product.price_cents = price_cents
                    return product

        product = self.concurrency.run(_op, label=f"price update for product {product_id}")
        current_app.logger.info("catalog repriced product %s to %d", product_id, price_cents)
        return product

    def adjust_stock(self, product_id: int, delta: int, reason: str | None, actor_id) -> InventoryTransaction:
        """Stock correction. Pure delegation to the ledger."""
        return self.ledger.append(product_id, delta, KIND_ADJUSTMENT, actor_id, note=reason)
