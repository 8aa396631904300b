from .tenancy import Tenant
from .auth import User
from .catalog import Product
from .transactions import Transaction, TransactionItem
from .orders import Order
from .sales import Sale

__all__ = [
    'Tenant',
    'User',
    'Product',
    'Transaction', 'TransactionItem',
    'Order',
    'Sale',
]
