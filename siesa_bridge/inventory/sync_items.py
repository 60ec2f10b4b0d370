from __future__ import annotations

import logging
from typing import List

from siesa_bridge.db import db_timestamp, returning_row
from siesa_bridge.domain.gateways import StorefrontIds
from siesa_bridge.domain.records import InventorySync, InventorySyncBatch
from siesa_bridge.domain.statuses import InventorySyncStatus
from siesa_bridge.errors import InvalidTransitionError, ReferentialIntegrityError, ValidationError


logger = logging.getLogger(__name__)

_ITEM_COLUMNS = """
    id, sync_batch_id, sku, product_name, shopify_product_id, shopify_variant_id,
    shopify_inventory_item_id, shopify_location_id, siesa_quantity, shopify_quantity_before,
    shopify_quantity_after, status, error_message, synced_at, created_at
"""


def _load_item(db, item_id: int) -> InventorySync | None:
    row = db.execute(f"SELECT {_ITEM_COLUMNS} FROM inventory_syncs WHERE id = ?", (int(item_id),)).fetchone()
    return InventorySync.from_row(row) if row else None


def get_sync_item(db, item_id: int) -> InventorySync:
    item = _load_item(db, item_id)
    if item is None:
        raise ReferentialIntegrityError("sync_item", item_id)
    return item


def open_sync_item(db, batch_id: int, sku: str, product_name: str, siesa_quantity: int) -> InventorySync:
    batch_row = db.execute(
        "SELECT id, status, started_at FROM inventory_sync_batches WHERE id = ?",
        (int(batch_id),),
    ).fetchone()
    if not batch_row:
        raise ReferentialIntegrityError("batch", batch_id)
    batch = InventorySyncBatch.from_row(batch_row)
    if not batch.status.is_running:
        raise InvalidTransitionError("batch", batch_id, batch.status.value, "open_sync_item")

    normalized_sku = str(sku or "").strip()
    if not normalized_sku:
        raise ValidationError(details="El SKU es obligatorio.")
    try:
        quantity = int(siesa_quantity)
    except (TypeError, ValueError) as exc:
        raise ValidationError(details=f"Cantidad SIESA invalida para {normalized_sku}.") from exc

    cursor = db.execute(
        f"""
        INSERT INTO inventory_syncs (sync_batch_id, sku, product_name, siesa_quantity, status, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        RETURNING {_ITEM_COLUMNS}
        """,
        (
            int(batch_id),
            normalized_sku,
            str(product_name or "").strip() or normalized_sku,
            quantity,
            InventorySyncStatus.PENDING.value,
            db_timestamp(),
        ),
    )
    row = returning_row(cursor)
    db.commit()
    return InventorySync.from_row(row)


def _resolve(db, item_id: int, action: str, assignments: str, params: tuple) -> InventorySync:
    cursor = db.execute(
        f"""
        UPDATE inventory_syncs
        SET {assignments},
            synced_at = ?
        WHERE id = ? AND status = ?
        """,
        (*params, db_timestamp(), int(item_id), InventorySyncStatus.PENDING.value),
    )
    if int(getattr(cursor, "rowcount", 0) or 0) == 0:
        current = get_sync_item(db, item_id)
        logger.error(
            "inventory_sync_invalid_transition",
            extra={"sync_item_id": int(item_id), "action": action, "status": current.status.value},
        )
        raise InvalidTransitionError("sync_item", item_id, current.status.value, action)
    db.commit()
    return get_sync_item(db, item_id)


def _ids_params(ids: StorefrontIds | None) -> tuple:
    ids = ids or StorefrontIds()
    return (ids.product_id, ids.variant_id, ids.inventory_item_id, ids.location_id)


_IDS_ASSIGNMENTS = """
    shopify_product_id = ?,
    shopify_variant_id = ?,
    shopify_inventory_item_id = ?,
    shopify_location_id = ?
"""


def resolve_success(
    db,
    item_id: int,
    storefront_ids: StorefrontIds,
    qty_before: int | None,
    qty_after: int,
) -> InventorySync:
    item = get_sync_item(db, item_id)
    if int(qty_after) != item.siesa_quantity:
        raise ValidationError(
            details=(
                f"SKU {item.sku}: cantidad final {qty_after} no coincide con SIESA {item.siesa_quantity}."
            ),
        )
    return _resolve(
        db,
        item_id,
        "resolve_success",
        f"""
        status = ?,
        {_IDS_ASSIGNMENTS},
        shopify_quantity_before = ?,
        shopify_quantity_after = ?,
        error_message = NULL
        """,
        (
            InventorySyncStatus.SUCCESS.value,
            *_ids_params(storefront_ids),
            None if qty_before is None else int(qty_before),
            int(qty_after),
        ),
    )


def resolve_failed(db, item_id: int, error_message: str) -> InventorySync:
    details = str(error_message or "").strip() or "error desconocido"
    return _resolve(
        db,
        item_id,
        "resolve_failed",
        "status = ?, error_message = ?",
        (InventorySyncStatus.FAILED.value, details[:1000]),
    )


def resolve_skipped(
    db,
    item_id: int,
    reason: str,
    storefront_ids: StorefrontIds | None = None,
) -> InventorySync:
    return _resolve(
        db,
        item_id,
        "resolve_skipped",
        f"status = ?, {_IDS_ASSIGNMENTS}, error_message = ?",
        (
            InventorySyncStatus.SKIPPED.value,
            *_ids_params(storefront_ids),
            str(reason or "").strip() or None,
        ),
    )


def list_batch_items(
    db,
    batch_id: int,
    *,
    status: InventorySyncStatus | str | None = None,
) -> List[InventorySync]:
    params: list[object] = [int(batch_id)]
    status_clause = ""
    if status is not None:
        status_clause = "AND status = ?"
        params.append(InventorySyncStatus.parse(status).value)
    rows = db.execute(
        f"""
        SELECT {_ITEM_COLUMNS}
        FROM inventory_syncs
        WHERE sync_batch_id = ?
          {status_clause}
        ORDER BY id ASC
        """,
        params,
    ).fetchall()
    return [InventorySync.from_row(row) for row in rows]
