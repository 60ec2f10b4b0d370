from siesa_bridge.domain.statuses import (
    InventorySyncStatus,
    OrderLogLevel,
    OrderStatus,
    SyncBatchStatus,
)

__all__ = [
    "InventorySyncStatus",
    "OrderLogLevel",
    "OrderStatus",
    "SyncBatchStatus",
]
