from .auth import User
from .catalog import Category, UsageRoute, Unit, Cabinet, ShelfRow, Compartment, Product, ProductUnit, Supplier
from .inventory import InventoryItem
from .sales import Invoice, InvoiceItem
from .purchasing import PurchaseOrder, PurchaseOrderItem
from .ledger import Transaction, DocumentSequence

__all__ = [
    'User',
    'Category', 'UsageRoute', 'Unit', 'Cabinet', 'ShelfRow', 'Compartment',
    'Product', 'ProductUnit', 'Supplier',
    'InventoryItem',
    'Invoice', 'InvoiceItem',
    'PurchaseOrder', 'PurchaseOrderItem',
    'Transaction', 'DocumentSequence',
]
