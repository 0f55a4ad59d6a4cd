# Overview: Composition root wiring the core components around one storage handle.

from __future__ import annotations

from typing import Mapping

from flask import current_app

from .services.catalog_service import ProductCatalog
from .services.concurrency import ConcurrencyControl, LockRegistry
from .services.finance_service import FinancialLedger
from .services.ledger_service import InventoryLedger
from .services.order_service import OrderService
from .services.payment_service import PaymentService
from .services.policies import DiscountPolicy, TaxPolicy, flat_rate_tax, no_discount
from .services.reporting_service import ReportingService
from .services.storage import StorageHandle


class PosCore:
    """
    All core components, constructed with the same injected storage handle
    and lock registry. One instance per application.
    """

    def __init__(
        self,
        storage: StorageHandle | None = None,
        *,
        tax_policy: TaxPolicy | None = None,
        discount_policy: DiscountPolicy | None = None,
        lock_timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_backoff_base: float = 0.05,
    ):
        self.storage = storage or StorageHandle()
        self.locks = LockRegistry(timeout=lock_timeout)
        self.concurrency = ConcurrencyControl(
            self.storage,
            self.locks,
            attempts=retry_attempts,
            backoff_base=retry_backoff_base,
        )

        self.ledger = InventoryLedger(self.storage, self.concurrency)
        self.catalog = ProductCatalog(self.storage, self.ledger, self.concurrency)
        self.finance = FinancialLedger(self.storage, self.concurrency)
        self.orders = OrderService(
            self.storage,
            self.ledger,
            self.finance,
            self.concurrency,
            tax_policy=tax_policy or flat_rate_tax(0),
            discount_policy=discount_policy or no_discount,
        )
        self.payments = PaymentService(self.storage, self.concurrency)
        self.reports = ReportingService(self.storage)

    @classmethod
    def from_config(
        cls,
        config: Mapping,
        *,
        tax_policy: TaxPolicy | None = None,
        discount_policy: DiscountPolicy | None = None,
    ) -> "PosCore":
        return cls(
            tax_policy=tax_policy or flat_rate_tax(int(config.get("TAX_RATE_BPS", 0))),
            discount_policy=discount_policy,
            lock_timeout=float(config.get("LOCK_TIMEOUT_SECONDS", 5.0)),
            retry_attempts=int(config.get("RETRY_ATTEMPTS", 3)),
            retry_backoff_base=float(config.get("RETRY_BACKOFF_BASE", 0.05)),
        )


def get_core() -> PosCore:
    """The PosCore registered on the current Flask app."""
    return current_app.extensions["poscore"]
