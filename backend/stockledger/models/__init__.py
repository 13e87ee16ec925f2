from .catalog import Product, ledger_write_scope
from .inventory import StockMovement, MOVEMENT_TYPES
from .sales import Sale, SaleItem, PAYMENT_METHODS, PAYMENT_STATUSES
from .documents import (
    Return,
    ReturnItem,
    PurchaseOrder,
    PurchaseOrderItem,
    Quotation,
    QuotationItem,
    DocumentSequence,
    REFUND_METHODS,
    RETURN_STATUSES,
    PURCHASE_ORDER_STATUSES,
    QUOTATION_STATUSES,
)

__all__ = [
    'Product', 'ledger_write_scope',
    'StockMovement', 'MOVEMENT_TYPES',
    'Sale', 'SaleItem', 'PAYMENT_METHODS', 'PAYMENT_STATUSES',
    'Return', 'ReturnItem', 'PurchaseOrder', 'PurchaseOrderItem',
    'Quotation', 'QuotationItem', 'DocumentSequence',
    'REFUND_METHODS', 'RETURN_STATUSES', 'PURCHASE_ORDER_STATUSES', 'QUOTATION_STATUSES',
]
