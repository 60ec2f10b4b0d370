from siesa_bridge.inventory.reconciler import run_inventory_reconciliation
from siesa_bridge.inventory.sync_batches import (
    BatchAggregator,
    abort_batch,
    batch_summary,
    close_batch,
    derive_batch_status,
    get_batch,
    list_batches,
    open_batch,
    record_item_outcome,
)
from siesa_bridge.inventory.sync_items import (
    get_sync_item,
    list_batch_items,
    open_sync_item,
    resolve_failed,
    resolve_skipped,
    resolve_success,
)

__all__ = [
    "BatchAggregator",
    "abort_batch",
    "batch_summary",
    "close_batch",
    "derive_batch_status",
    "get_batch",
    "get_sync_item",
    "list_batch_items",
    "list_batches",
    "open_batch",
    "open_sync_item",
    "record_item_outcome",
    "resolve_failed",
    "resolve_skipped",
    "resolve_success",
    "run_inventory_reconciliation",
]
