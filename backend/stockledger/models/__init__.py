from .inventory import (
    Product,
    StockHistoryEntry,
    StockReason,
    PRODUCT_STATUS_ACTIVE,
    PRODUCT_STATUS_ARCHIVED,
    PRODUCT_STATUS_INACTIVE,
    PRODUCT_STATUSES,
)
from .sales import SaleLine, SALE_STATUS_COMPLETED

__all__ = [
    'Product', 'StockHistoryEntry', 'StockReason',
    'PRODUCT_STATUS_ACTIVE', 'PRODUCT_STATUS_ARCHIVED', 'PRODUCT_STATUS_INACTIVE', 'PRODUCT_STATUSES',
    'SaleLine', 'SALE_STATUS_COMPLETED',
]
