from .auth import User, SessionToken, USER_ROLES
from .catalog import Category, Product
from .contacts import Agent, Customer
from .orders import Order, OrderItem, PAYMENT_STATUSES, PAYMENT_METHODS, ORDER_STATUSES
from .stock import StockTransaction, DocumentSequence, TRANSACTION_TYPES
from .invoices import Invoice

__all__ = [
    'User', 'SessionToken', 'USER_ROLES',
    'Category', 'Product',
    'Agent', 'Customer',
    'Order', 'OrderItem', 'PAYMENT_STATUSES', 'PAYMENT_METHODS', 'ORDER_STATUSES',
    'StockTransaction', 'DocumentSequence', 'TRANSACTION_TYPES',
    'Invoice',
]
