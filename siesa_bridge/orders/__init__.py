from siesa_bridge.orders.audit_log import list_order_logs, record_order_log
from siesa_bridge.orders.export_machine import (
    IngestOutcome,
    begin_processing,
    claim_order,
    complete_order,
    count_orders_by_status,
    fail_order,
    find_order_by_external_id,
    get_order,
    ingest_order,
    ingest_storefront_order,
    list_orders,
    requeue_stalled_orders,
    reset_order,
    select_due_orders,
)
from siesa_bridge.orders.export_worker import process_order_exports, pull_storefront_orders

__all__ = [
    "IngestOutcome",
    "begin_processing",
    "claim_order",
    "complete_order",
    "count_orders_by_status",
    "fail_order",
    "find_order_by_external_id",
    "get_order",
    "ingest_order",
    "ingest_storefront_order",
    "list_order_logs",
    "list_orders",
    "process_order_exports",
    "pull_storefront_orders",
    "record_order_log",
    "requeue_stalled_orders",
    "reset_order",
    "select_due_orders",
]
