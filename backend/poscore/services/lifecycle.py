# Overview: Order lifecycle state machine.

"""
Order Lifecycle

================================================================================
STATE MACHINE:
    pending -> completed
    pending -> cancelled

    pending:   items may be added/removed, payments may be recorded
    completed: TERMINAL. Sale recorded in the financial ledger.
    cancelled: TERMINAL. Every item's stock deduction has been reversed.

RULES:
1. Only the two edges above exist. Everything else is InvalidState.
2. Terminal states have no outgoing edges, not even to themselves.
3. Item changes and payments require pending.
================================================================================
"""

from __future__ import annotations

from enum import Enum

from ..errors import InvalidState


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

ALLOWED_TRANSITIONS = frozenset({
    (OrderStatus.PENDING, OrderStatus.COMPLETED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
})


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidState(f"Unknown order status '{value}'") from None


def can_transition(from_status, to_status) -> bool:
    return (parse_status(from_status), parse_status(to_status)) in ALLOWED_TRANSITIONS


def transition(from_status, to_status) -> OrderStatus:
    """
    Return the target status if the edge is allowed.

    Raises:
        InvalidState: for any edge outside ALLOWED_TRANSITIONS
    """
    current = parse_status(from_status)
    target = parse_status(to_status)
    if (current, target) not in ALLOWED_TRANSITIONS:
        raise InvalidState(
            f"Cannot transition order from '{current.value}' to '{target.value}'",
            details={"from_status": current.value, "to_status": target.value},
        )
    return target


def require_pending(status, action: str) -> None:
    """Guard for item changes and payments."""
    current = parse_status(status)
    if current is not OrderStatus.PENDING:
        raise InvalidState(
            f"Cannot {action} on a {current.value} order",
            details={"status": current.value},
        )
