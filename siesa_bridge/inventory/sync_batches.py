"""Inventory sync batch lifecycle and counter aggregation.

A batch is RUNNING while items are being reported. Each reported outcome bumps
``total_products`` and exactly one outcome counter in a single UPDATE, so once a
batch is closed ``successful + failed + skipped == total``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List

from siesa_bridge.db import db_timestamp, returning_row
from siesa_bridge.domain.records import InventorySyncBatch
from siesa_bridge.domain.statuses import InventorySyncStatus, SyncBatchStatus
from siesa_bridge.errors import InvalidTransitionError, ReferentialIntegrityError, ValidationError
from siesa_bridge.observability import observe_inventory_batch


logger = logging.getLogger(__name__)

_BATCH_COLUMNS = """
    id, started_at, finished_at, total_products, successful_syncs, failed_syncs,
    skipped_syncs, status, error_message, created_at, updated_at
"""
_OUTCOME_COUNTERS = {
    InventorySyncStatus.SUCCESS: "successful_syncs",
    InventorySyncStatus.FAILED: "failed_syncs",
    InventorySyncStatus.SKIPPED: "skipped_syncs",
}


def derive_batch_status(successful: int, failed: int, total: int) -> SyncBatchStatus:
    if int(total) <= 0:
        # Un lote sin productos se considera completado.
        return SyncBatchStatus.COMPLETED
    if int(failed) <= 0:
        return SyncBatchStatus.COMPLETED
    if int(successful) <= 0:
        return SyncBatchStatus.FAILED
    return SyncBatchStatus.PARTIAL


def _load_batch(db, batch_id: int) -> InventorySyncBatch | None:
    row = db.execute(
        f"SELECT {_BATCH_COLUMNS} FROM inventory_sync_batches WHERE id = ?",
        (int(batch_id),),
    ).fetchone()
    return InventorySyncBatch.from_row(row) if row else None


def get_batch(db, batch_id: int) -> InventorySyncBatch:
    batch = _load_batch(db, batch_id)
    if batch is None:
        raise ReferentialIntegrityError("batch", batch_id)
    return batch


def _raise_not_running(db, batch_id: int, action: str) -> None:
    batch = get_batch(db, batch_id)
    logger.error(
        "inventory_batch_invalid_transition",
        extra={"batch_id": int(batch_id), "action": action, "status": batch.status.value},
    )
    raise InvalidTransitionError("batch", batch_id, batch.status.value, action)


def open_batch(db) -> InventorySyncBatch:
    now = db_timestamp()
    cursor = db.execute(
        f"""
        INSERT INTO inventory_sync_batches (
            started_at, total_products, successful_syncs, failed_syncs, skipped_syncs,
            status, created_at, updated_at
        )
        VALUES (?, 0, 0, 0, 0, ?, ?, ?)
        RETURNING {_BATCH_COLUMNS}
        """,
        (now, SyncBatchStatus.RUNNING.value, now, now),
    )
    row = returning_row(cursor)
    db.commit()
    batch = InventorySyncBatch.from_row(row)
    observe_inventory_batch(batch.status.value)
    logger.info("inventory_sync_batch_opened", extra={"batch_id": batch.id})
    return batch


def record_item_outcome(db, batch_id: int, outcome: InventorySyncStatus | str) -> InventorySyncBatch:
    resolved = InventorySyncStatus.parse(outcome)
    counter = _OUTCOME_COUNTERS.get(resolved)
    if counter is None:
        raise ValidationError(details="Solo se registran resultados terminales de un item.")

    cursor = db.execute(
        f"""
        UPDATE inventory_sync_batches
        SET total_products = total_products + 1,
            {counter} = {counter} + 1,
            updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (db_timestamp(), int(batch_id), SyncBatchStatus.RUNNING.value),
    )
    if int(getattr(cursor, "rowcount", 0) or 0) == 0:
        _raise_not_running(db, batch_id, "record_item_outcome")
    db.commit()
    return get_batch(db, batch_id)


def close_batch(db, batch_id: int) -> InventorySyncBatch:
    current = get_batch(db, batch_id)
    if not current.status.is_running:
        _raise_not_running(db, batch_id, "close")

    final_status = derive_batch_status(
        current.successful_syncs,
        current.failed_syncs,
        current.total_products,
    )
    now = db_timestamp()
    # total_products en el WHERE: si entra otro resultado entre la lectura y el cierre, no se cierra.
    cursor = db.execute(
        f"""
        UPDATE inventory_sync_batches
        SET status = ?,
            finished_at = ?,
            updated_at = ?
        WHERE id = ? AND status = ? AND total_products = ?
        RETURNING {_BATCH_COLUMNS}
        """,
        (
            final_status.value,
            now,
            now,
            int(batch_id),
            SyncBatchStatus.RUNNING.value,
            current.total_products,
        ),
    )
    row = returning_row(cursor)
    if row is None:
        _raise_not_running(db, batch_id, "close")
    db.commit()

    batch = InventorySyncBatch.from_row(row)
    observe_inventory_batch(batch.status.value)
    logger.info("inventory_sync_batch_closed", extra=batch_summary(batch))
    return batch


def abort_batch(db, batch_id: int, error_message: str) -> InventorySyncBatch:
    details = (str(error_message or "").strip() or "error desconocido")[:1000]
    now = db_timestamp()
    cursor = db.execute(
        f"""
        UPDATE inventory_sync_batches
        SET status = ?,
            error_message = ?,
            finished_at = ?,
            updated_at = ?
        WHERE id = ? AND status = ?
        RETURNING {_BATCH_COLUMNS}
        """,
        (
            SyncBatchStatus.FAILED.value,
            details,
            now,
            now,
            int(batch_id),
            SyncBatchStatus.RUNNING.value,
        ),
    )
    row = returning_row(cursor)
    if row is None:
        _raise_not_running(db, batch_id, "abort")
    db.commit()

    batch = InventorySyncBatch.from_row(row)
    observe_inventory_batch(batch.status.value)
    logger.error("inventory_sync_batch_aborted", extra={"batch_id": batch.id, "error": details})
    return batch


def batch_summary(batch: InventorySyncBatch) -> Dict[str, Any]:
    summary = batch.to_dict()
    summary["batch_id"] = summary.pop("id")
    summary["is_consistent"] = batch.is_consistent
    return summary


def list_batches(db, *, status: SyncBatchStatus | str | None = None, limit: int = 20) -> List[InventorySyncBatch]:
    params: list[object] = []
    status_clause = ""
    if status is not None:
        status_clause = "WHERE status = ?"
        params.append(SyncBatchStatus.parse(status).value)
    params.append(max(1, int(limit)))
    rows = db.execute(
        f"""
        SELECT {_BATCH_COLUMNS}
        FROM inventory_sync_batches
        {status_clause}
        ORDER BY started_at DESC, id DESC
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [InventorySyncBatch.from_row(row) for row in rows]


class BatchAggregator:
    """Serializes outcome reporting for one batch across worker threads."""

    def __init__(self, batch_id: int) -> None:
        self.batch_id = int(batch_id)
        self._lock = threading.Lock()

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def record(self, db, outcome: InventorySyncStatus | str) -> InventorySyncBatch:
        with self._lock:
            return record_item_outcome(db, self.batch_id, outcome)

    def close(self, db) -> InventorySyncBatch:
        with self._lock:
            return close_batch(db, self.batch_id)

    def abort(self, db, error_message: str) -> InventorySyncBatch:
        with self._lock:
            return abort_batch(db, self.batch_id, error_message)
