from .auth import User, SessionToken
from .catalog import Category, Provider, Product
from .inventory import InventoryBatch
from .registers import CashRegister, CashSession
from .sales import Sale, SaleLine, PaymentSplit
from .currency import ExchangeRate

__all__ = [
    'User', 'SessionToken',
    'Category', 'Provider', 'Product',
    'InventoryBatch',
    'CashRegister', 'CashSession',
    'Sale', 'SaleLine', 'PaymentSplit',
    'ExchangeRate',
]
