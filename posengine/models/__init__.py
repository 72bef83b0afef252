from .tenancy import Outlet
from .catalog import Product, ProductVariant, Supplier
from .inventory import StockItem, StockAdjustment
from .sales import Transaction, TransactionItem, TransactionPayment
from .purchasing import PurchaseOrder, PurchaseOrderItem
from .opname import OpnameSession, OpnameItem
from .loyalty import LoyaltySettings, MemberTier, Customer, PointTransaction
from .documents import DocumentSequence, AuditEvent

__all__ = [
    'Outlet',
    'Product', 'ProductVariant', 'Supplier',
    'StockItem', 'StockAdjustment',
    'Transaction', 'TransactionItem', 'TransactionPayment',
    'PurchaseOrder', 'PurchaseOrderItem',
    'OpnameSession', 'OpnameItem',
    'LoyaltySettings', 'MemberTier', 'Customer', 'PointTransaction',
    'DocumentSequence', 'AuditEvent',
]
