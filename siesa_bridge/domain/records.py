from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from siesa_bridge.db import parse_db_timestamp
from siesa_bridge.domain.payload import OrderSnapshot
from siesa_bridge.domain.statuses import (
    InventorySyncStatus,
    OrderLogLevel,
    OrderStatus,
    SyncBatchStatus,
)


def row_to_dict(row) -> Dict[str, Any]:
    if row is None:
        return {}
    if isinstance(row, dict):
        return dict(row)
    keys = getattr(row, "keys", None)
    if callable(keys):
        return {key: row[key] for key in row.keys()}
    return dict(row)


def _json_loads(value) -> Dict[str, Any]:
    if isinstance(value, dict):
        return dict(value)
    raw = str(value or "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _optional_int(value) -> int | None:
    return None if value is None else int(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat().replace("+00:00", "Z") if value else None


@dataclass(frozen=True)
class Order:
    id: int
    shopify_order_id: str
    shopify_order_number: str
    order_json: str
    status: OrderStatus
    attempts: int
    error_message: str | None = None
    flat_file_name: str | None = None
    flat_file_path: str | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @staticmethod
    def from_row(row) -> "Order":
        data = row_to_dict(row)
        return Order(
            id=int(data["id"]),
            shopify_order_id=str(data["shopify_order_id"]),
            shopify_order_number=str(data["shopify_order_number"]),
            order_json=str(data.get("order_json") or "{}"),
            status=OrderStatus.parse(data.get("status")),
            attempts=int(data.get("attempts") or 0),
            error_message=data.get("error_message"),
            flat_file_name=data.get("flat_file_name"),
            flat_file_path=data.get("flat_file_path"),
            processed_at=parse_db_timestamp(data.get("processed_at")),
            created_at=parse_db_timestamp(data.get("created_at")),
            updated_at=parse_db_timestamp(data.get("updated_at")),
        )

    @property
    def snapshot(self) -> OrderSnapshot:
        return OrderSnapshot.from_json(self.order_json)

    def is_exhausted(self, max_attempts: int) -> bool:
        return self.status.is_failed and self.attempts >= int(max_attempts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "shopify_order_id": self.shopify_order_id,
            "shopify_order_number": self.shopify_order_number,
            "status": self.status.value,
            "attempts": self.attempts,
            "error_message": self.error_message,
            "flat_file_name": self.flat_file_name,
            "flat_file_path": self.flat_file_path,
            "processed_at": _iso(self.processed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class OrderLog:
    id: int
    order_id: int
    level: OrderLogLevel
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    @staticmethod
    def from_row(row) -> "OrderLog":
        data = row_to_dict(row)
        return OrderLog(
            id=int(data["id"]),
            order_id=int(data["order_id"]),
            level=OrderLogLevel.parse(data.get("level")),
            message=str(data.get("message") or ""),
            context=_json_loads(data.get("context")),
            created_at=parse_db_timestamp(data.get("created_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "level": self.level.value,
            "message": self.message,
            "context": dict(self.context),
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class InventorySyncBatch:
    id: int
    status: SyncBatchStatus
    started_at: datetime | None
    finished_at: datetime | None = None
    total_products: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    skipped_syncs: int = 0
    error_message: str | None = None

    @staticmethod
    def from_row(row) -> "InventorySyncBatch":
        data = row_to_dict(row)
        return InventorySyncBatch(
            id=int(data["id"]),
            status=SyncBatchStatus.parse(data.get("status")),
            started_at=parse_db_timestamp(data.get("started_at")),
            finished_at=parse_db_timestamp(data.get("finished_at")),
            total_products=int(data.get("total_products") or 0),
            successful_syncs=int(data.get("successful_syncs") or 0),
            failed_syncs=int(data.get("failed_syncs") or 0),
            skipped_syncs=int(data.get("skipped_syncs") or 0),
            error_message=data.get("error_message"),
        )

    @property
    def resolved_count(self) -> int:
        return self.successful_syncs + self.failed_syncs + self.skipped_syncs

    @property
    def is_consistent(self) -> bool:
        if self.status.is_running:
            return self.resolved_count <= self.total_products
        return self.resolved_count == self.total_products

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "total_products": self.total_products,
            "successful_syncs": self.successful_syncs,
            "failed_syncs": self.failed_syncs,
            "skipped_syncs": self.skipped_syncs,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class InventorySync:
    id: int
    sync_batch_id: int
    sku: str
    product_name: str
    siesa_quantity: int
    status: InventorySyncStatus
    shopify_product_id: str | None = None
    shopify_variant_id: str | None = None
    shopify_inventory_item_id: str | None = None
    shopify_location_id: str | None = None
    shopify_quantity_before: int | None = None
    shopify_quantity_after: int | None = None
    error_message: str | None = None
    synced_at: datetime | None = None

    @staticmethod
    def from_row(row) -> "InventorySync":
        data = row_to_dict(row)
        return InventorySync(
            id=int(data["id"]),
            sync_batch_id=int(data["sync_batch_id"]),
            sku=str(data["sku"]),
            product_name=str(data.get("product_name") or ""),
            siesa_quantity=int(data.get("siesa_quantity") or 0),
            status=InventorySyncStatus.parse(data.get("status")),
            shopify_product_id=data.get("shopify_product_id"),
            shopify_variant_id=data.get("shopify_variant_id"),
            shopify_inventory_item_id=data.get("shopify_inventory_item_id"),
            shopify_location_id=data.get("shopify_location_id"),
            shopify_quantity_before=_optional_int(data.get("shopify_quantity_before")),
            shopify_quantity_after=_optional_int(data.get("shopify_quantity_after")),
            error_message=data.get("error_message"),
            synced_at=parse_db_timestamp(data.get("synced_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sync_batch_id": self.sync_batch_id,
            "sku": self.sku,
            "product_name": self.product_name,
            "siesa_quantity": self.siesa_quantity,
            "status": self.status.value,
            "shopify_quantity_before": self.shopify_quantity_before,
            "shopify_quantity_after": self.shopify_quantity_after,
            "error_message": self.error_message,
            "synced_at": _iso(self.synced_at),
        }
