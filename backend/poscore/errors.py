# Overview: Error taxonomy raised by the order/inventory core.

"""
Every core operation either applies all of its effects or none of them, and
reports failure with one of the exceptions below. The boundary layer that
calls the core maps these to user-visible messages or status codes.

Only ConcurrentModification is worth retrying; the core already retried a
bounded number of times before raising it.
"""


class PosError(Exception):
    """Base class for core errors. Carries structured details for callers."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvalidState(PosError):
    """Operation is not valid for the aggregate's current state."""


class InsufficientStock(PosError):
    """Requested quantity exceeds stock on hand at commit time."""


class InvalidQuantity(PosError):
    """Quantity or amount is zero, negative or not an integer."""


class NotFound(PosError):
    """Referenced product, order, item or payment does not exist."""


class ConcurrentModification(PosError):
    """Lock or version conflict that persisted through every retry."""


class ValidationError(PosError):
    """Malformed input that is not a quantity problem (unknown kind, bad sku...)."""
