from .tenancy import Store
from .catalog import Product
from .ledger import DailyTransaction, TransactionItem
from .reliability import SupplierStats
from .audit import AuditLog
from .notifications import Notification, CutoffWarning

__all__ = [
    'Store',
    'Product',
    'DailyTransaction', 'TransactionItem',
    'SupplierStats',
    'AuditLog',
    'Notification', 'CutoffWarning',
]
