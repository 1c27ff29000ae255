from .members import Member, MemberBalance, GRADE_ORDER
from .catalog import Product, RecipeComponent, ProductLog
from .ledger import Transaction, CashBox, CashBoxEntry
from .kiosk import KioskStatus

__all__ = [
    'Member', 'MemberBalance', 'GRADE_ORDER',
    'Product', 'RecipeComponent', 'ProductLog',
    'Transaction', 'CashBox', 'CashBoxEntry',
    'KioskStatus',
]
