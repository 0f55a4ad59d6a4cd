from .inventory import Product, InventoryTransaction
from .orders import Order, OrderItem, Payment
from .finance import FinancialTransaction

__all__ = [
    'Product', 'InventoryTransaction',
    'Order', 'OrderItem', 'Payment',
    'FinancialTransaction',
]
