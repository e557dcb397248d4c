from .lifecycle import Lifecycle, SoftDeleteMixin, active_only, RECORD_ACTIVE, RECORD_DELETED
from .tenancy import Business, BusinessLocation
from .catalog import Product, ProductVariation
from .ledger import LedgerEntry, VariationLocationBalance
from .transfers import Transfer, TransferItem
from .sequences import SequenceCounter
from .documents import (
    Sale, SaleItem, PurchaseReceipt, PurchaseReceiptItem,
    CustomerReturn, CustomerReturnItem, StockCorrection,
)
from .idempotency import IdempotencyKey

__all__ = [
    'Lifecycle', 'SoftDeleteMixin', 'active_only', 'RECORD_ACTIVE', 'RECORD_DELETED',
    'Business', 'BusinessLocation',
    'Product', 'ProductVariation',
    'LedgerEntry', 'VariationLocationBalance',
    'Transfer', 'TransferItem',
    'SequenceCounter',
    'Sale', 'SaleItem', 'PurchaseReceipt', 'PurchaseReceiptItem',
    'CustomerReturn', 'CustomerReturnItem', 'StockCorrection',
    'IdempotencyKey',
]
