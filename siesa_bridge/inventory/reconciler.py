"""Full inventory reconciliation run: ERP stock levels pushed to the storefront.

Each SKU is an independent unit of work. A failure on one SKU is recorded on its
item and counted on the batch; an ERP row without a usable quantity is counted as
failed without an item row. Only a failure to read the ERP stock feed, or an
unexpected error outside a single SKU, aborts the whole batch with FatalBatchError.
Cancellation propagates and leaves the batch RUNNING.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List

from siesa_bridge.config import SyncSettings
from siesa_bridge.db import Database
from siesa_bridge.domain.gateways import (
    ErpInventoryGateway,
    ErpStockLevel,
    GatewayError,
    StorefrontGateway,
    StorefrontIds,
)
from siesa_bridge.domain.records import InventorySync, InventorySyncBatch
from siesa_bridge.domain.statuses import InventorySyncStatus
from siesa_bridge.errors import FatalBatchError, ValidationError
from siesa_bridge.inventory.sync_batches import BatchAggregator, open_batch
from siesa_bridge.inventory.sync_items import (
    open_sync_item,
    resolve_failed,
    resolve_skipped,
    resolve_success,
)
from siesa_bridge.observability import (
    bind_request_id,
    current_request_id,
    observe_inventory_item,
)


logger = logging.getLogger(__name__)


def stock_quantity(level: ErpStockLevel) -> int:
    """Whole-unit quantity from an ERP row; "8", 8.0 and "8.0" are all 8."""
    raw = level.quantity
    if isinstance(raw, bool):
        raise ValidationError(details=f"Cantidad SIESA invalida para {level.sku}.")
    if isinstance(raw, int):
        return raw
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(details=f"Cantidad SIESA invalida para {level.sku}.") from exc
    if not value.is_finite() or value != value.to_integral_value():
        raise ValidationError(details=f"Cantidad SIESA invalida para {level.sku}.")
    return int(value)


def _unique_stock_levels(levels: Dict[str, ErpStockLevel]) -> List[ErpStockLevel]:
    seen: set[str] = set()
    unique: List[ErpStockLevel] = []
    for key, level in levels.items():
        sku = str(level.sku or key or "").strip()
        if not sku or sku in seen:
            continue
        seen.add(sku)
        unique.append(level if level.sku == sku else replace(level, sku=sku))
    return unique


class _ConnectionPool:
    """One connection per worker thread, all closed together when the run ends."""

    def __init__(self, connect_fn: Callable[[], Database]) -> None:
        self._connect_fn = connect_fn
        self._local = threading.local()
        self._opened: List[Database] = []
        self._lock = threading.Lock()

    def get(self) -> Database:
        db = getattr(self._local, "db", None)
        if db is None:
            db = self._connect_fn()
            self._local.db = db
            with self._lock:
                self._opened.append(db)
        return db

    def close_all(self) -> None:
        with self._lock:
            opened, self._opened = self._opened, []
        for db in opened:
            db.close()


class _SkuReconciler:
    def __init__(
        self,
        *,
        aggregator: BatchAggregator,
        storefront: StorefrontGateway,
        settings: SyncSettings,
        request_id: str,
    ) -> None:
        self.aggregator = aggregator
        self.storefront = storefront
        self.settings = settings
        self.request_id = request_id

    def _ids(self, ids: StorefrontIds) -> StorefrontIds:
        if ids.location_id or not self.settings.inventory_location_id:
            return ids
        return replace(ids, location_id=self.settings.inventory_location_id)

    def __call__(self, db: Database, level: ErpStockLevel) -> InventorySync | None:
        with bind_request_id(self.request_id):
            return self._reconcile(db, level)

    def _reject(self, db: Database, level: ErpStockLevel, exc: Exception) -> None:
        # Sin cantidad valida no hay fila de item; el SKU cuenta como fallido en el lote.
        self.aggregator.record(db, InventorySyncStatus.FAILED)
        observe_inventory_item(InventorySyncStatus.FAILED.value)
        logger.warning(
            "inventory_sync_item_rejected",
            extra={
                "batch_id": self.aggregator.batch_id,
                "sku": level.sku,
                "siesa_quantity": repr(level.quantity),
                "error": f"{type(exc).__name__}: {exc}",
            },
        )

    def _reconcile(self, db: Database, level: ErpStockLevel) -> InventorySync | None:
        batch_id = self.aggregator.batch_id
        try:
            quantity = stock_quantity(level)
            with self.aggregator.lock:
                item = open_sync_item(db, batch_id, level.sku, level.product_name, quantity)
        except ValidationError as exc:
            self._reject(db, level, exc)
            return None

        ids: StorefrontIds | None = None
        before: int | None = None
        after: int | None = None
        error: str | None = None
        try:
            variant = self.storefront.find_variant(level.sku)
            if variant is not None:
                ids = self._ids(variant.ids)
                before = int(variant.available)
                if before == item.siesa_quantity:
                    after = before
                else:
                    after = int(self.storefront.set_inventory_quantity(variant, item.siesa_quantity))
                if after != item.siesa_quantity:
                    raise GatewayError(
                        f"La tienda reporto {after} unidades, se esperaban {item.siesa_quantity}",
                        code="quantity_mismatch",
                    )
        except Exception as exc:  # noqa: BLE001 - el fallo de un SKU no detiene a los demas
            error = f"{type(exc).__name__}: {exc}"

        with self.aggregator.lock:
            if error is not None:
                item = resolve_failed(db, item.id, error)
            elif ids is None:
                item = resolve_skipped(db, item.id, "SKU sin variante en la tienda")
            else:
                item = resolve_success(db, item.id, ids, before, after)
        self.aggregator.record(db, item.status)

        observe_inventory_item(item.status.value)
        log = logger.warning if item.status is InventorySyncStatus.FAILED else logger.info
        log(
            "inventory_sync_item_resolved",
            extra={
                "batch_id": batch_id,
                "sku": item.sku,
                "status": item.status.value,
                "siesa_quantity": item.siesa_quantity,
                "quantity_before": item.shopify_quantity_before,
                "quantity_after": item.shopify_quantity_after,
                "error": item.error_message,
            },
        )
        return item


def run_inventory_reconciliation(
    db: Database,
    *,
    settings: SyncSettings,
    erp: ErpInventoryGateway,
    storefront: StorefrontGateway,
    connect_fn: Callable[[], Database] | None = None,
) -> InventorySyncBatch:
    batch = open_batch(db)
    aggregator = BatchAggregator(batch.id)

    try:
        stock_levels = erp.fetch_stock_levels()
    except Exception as exc:  # noqa: BLE001 - sin inventario SIESA no hay lote posible
        details = f"{type(exc).__name__}: {exc}"
        aggregator.abort(db, details)
        raise FatalBatchError(details=details, payload={"batch_id": batch.id}) from exc

    levels = _unique_stock_levels(stock_levels or {})
    reconcile = _SkuReconciler(
        aggregator=aggregator,
        storefront=storefront,
        settings=settings,
        request_id=current_request_id(),
    )
    logger.info(
        "inventory_sync_batch_started",
        extra={"batch_id": batch.id, "skus": len(levels), "concurrency": settings.sync_concurrency},
    )

    try:
        _dispatch(db, levels, reconcile, settings=settings, connect_fn=connect_fn, batch_id=batch.id)
    except Exception as exc:
        details = f"{type(exc).__name__}: {exc}"
        logger.exception("inventory_sync_batch_interrupted", extra={"batch_id": batch.id, "error": details})
        aggregator.abort(db, f"Lote interrumpido: {details}")
        raise FatalBatchError(details=details, payload={"batch_id": batch.id}) from exc

    return aggregator.close(db)


def _dispatch(
    db: Database,
    levels: List[ErpStockLevel],
    reconcile: _SkuReconciler,
    *,
    settings: SyncSettings,
    connect_fn: Callable[[], Database] | None,
    batch_id: int,
) -> None:
    if connect_fn is None or settings.sync_concurrency <= 1 or len(levels) <= 1:
        for level in levels:
            reconcile(db, level)
        return

    pool = _ConnectionPool(connect_fn)
    executor = ThreadPoolExecutor(
        max_workers=settings.sync_concurrency,
        thread_name_prefix=f"inventory-sync-{batch_id}",
    )
    try:
        futures = [executor.submit(lambda lvl=level: reconcile(pool.get(), lvl)) for level in levels]
        for future in futures:
            future.result()
    except BaseException:
        executor.shutdown(wait=True, cancel_futures=True)
        pool.close_all()
        raise
    executor.shutdown(wait=True)
    pool.close_all()
