from .organization import Branch, User, Shop, Product
from .orders import Order, OrderItem
from .deliveries import Delivery, DeliveryPayment, OutstandingPayment
from .ledger import LedgerEntry
from .returns import StockReturn, StockReturnLine
from .discounts import BookerDiscountMonth, BookerDiscountContribution, DiscountResetAudit
from .documents import DocumentSequence

__all__ = [
    'Branch', 'User', 'Shop', 'Product',
    'Order', 'OrderItem',
    'Delivery', 'DeliveryPayment', 'OutstandingPayment',
    'LedgerEntry',
    'StockReturn', 'StockReturnLine',
    'BookerDiscountMonth', 'BookerDiscountContribution', 'DiscountResetAudit',
    'DocumentSequence',
]
