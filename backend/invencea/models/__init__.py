from .branches import Branch
from .auth import User, ActiveSession
from .inventory import InventoryItem, InventoryTransaction
from .borrowing import BorrowRequest, BorrowRequestItem, ReturnEvent
from .audit import AuditLog

__all__ = [
    'Branch',
    'User', 'ActiveSession',
    'InventoryItem', 'InventoryTransaction',
    'BorrowRequest', 'BorrowRequestItem', 'ReturnEvent',
    'AuditLog',
]
