# Overview: Tax and discount policies plugged into order totals.

"""
Policies are plain callables supplied by configuration:

    tax_policy(subtotal_cents: int) -> int
    discount_policy(order: Order) -> int

The core only calls them; it never inspects how they decide.
"""

from __future__ import annotations

from typing import Callable

from ..models import Order

TaxPolicy = Callable[[int], int]
DiscountPolicy = Callable[[Order], int]


def _round_bps(amount_cents: int, rate_bps: int) -> int:
    # nearest-cent rounding (half-up)
    return (amount_cents * rate_bps + 5000) // 10000


def flat_rate_tax(rate_bps: int) -> TaxPolicy:
    """Tax as a fixed rate in basis points (1000 bps = 10%) of the subtotal."""
    if rate_bps < 0:
        raise ValueError("tax rate cannot be negative")

    def _tax(subtotal_cents: int) -> int:
        return _round_bps(subtotal_cents, rate_bps)

    return _tax


def no_tax(subtotal_cents: int) -> int:
    return 0


def no_discount(order: Order) -> int:
    return 0


def percentage_discount(rate_bps: int) -> DiscountPolicy:
    """Discount as a fixed rate in basis points of the order subtotal."""
    if not 0 <= rate_bps <= 10000:
        raise ValueError("discount rate must be between 0 and 10000 bps")

    def _discount(order: Order) -> int:
        return _round_bps(order.subtotal_cents or 0, rate_bps)

    return _discount
