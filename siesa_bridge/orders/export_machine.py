"""Order export lifecycle: PENDING -> PROCESSING -> COMPLETED | FAILED.

Every transition is a single conditional UPDATE against the store, so the
PROCESSING state doubles as the dispatch lock between concurrent runners.
Audit entries are written after the transition is committed and never roll it
back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping

from siesa_bridge.db import db_timestamp, returning_row, utcnow
from siesa_bridge.domain.payload import OrderSnapshot, extract_order_identity
from siesa_bridge.domain.records import Order
from siesa_bridge.domain.statuses import OrderLogLevel, OrderStatus
from siesa_bridge.errors import InvalidTransitionError, ReferentialIntegrityError, ValidationError
from siesa_bridge.observability import observe_order_transition
from siesa_bridge.orders.audit_log import record_order_log
from siesa_bridge.ui_strings import order_log_message


logger = logging.getLogger(__name__)

_ORDER_COLUMNS = """
    id, shopify_order_id, shopify_order_number, order_json, flat_file_name, flat_file_path,
    status, error_message, attempts, processed_at, created_at, updated_at
"""
_ERROR_MESSAGE_MAX_LENGTH = 1000
_ORDER_ID_MAX_LENGTH = 255
_ORDER_NUMBER_MAX_LENGTH = 50


@dataclass(frozen=True)
class IngestOutcome:
    order: Order
    created: bool


def _load_order(db, order_id: int) -> Order | None:
    row = db.execute(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ?", (int(order_id),)).fetchone()
    return Order.from_row(row) if row else None


def get_order(db, order_id: int) -> Order:
    order = _load_order(db, order_id)
    if order is None:
        raise ReferentialIntegrityError("order", order_id)
    return order


def find_order_by_external_id(db, external_order_id: str) -> Order | None:
    row = db.execute(
        f"SELECT {_ORDER_COLUMNS} FROM orders WHERE shopify_order_id = ?",
        (str(external_order_id),),
    ).fetchone()
    return Order.from_row(row) if row else None


def list_orders(db, *, status: OrderStatus | str | None = None, limit: int = 100) -> List[Order]:
    params: list[object] = []
    status_clause = ""
    if status is not None:
        status_clause = "WHERE status = ?"
        params.append(OrderStatus.parse(status).value)
    params.append(max(1, int(limit)))
    rows = db.execute(
        f"""
        SELECT {_ORDER_COLUMNS}
        FROM orders
        {status_clause}
        ORDER BY created_at ASC, id ASC
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [Order.from_row(row) for row in rows]


def select_due_orders(db, *, max_attempts: int, limit: int) -> List[Order]:
    rows = db.execute(
        f"""
        SELECT {_ORDER_COLUMNS}
        FROM orders
        WHERE status = ?
           OR (status = ? AND attempts < ?)
        ORDER BY created_at ASC, id ASC
        LIMIT ?
        """,
        (
            OrderStatus.PENDING.value,
            OrderStatus.FAILED.value,
            int(max_attempts),
            max(1, int(limit)),
        ),
    ).fetchall()
    return [Order.from_row(row) for row in rows]


def _truncate_error(message: str | None) -> str:
    text = str(message or "").strip() or "error desconocido"
    return text[:_ERROR_MESSAGE_MAX_LENGTH]


def _write_audit(db, order_id: int, level: OrderLogLevel, key: str, context: Dict[str, Any]) -> None:
    try:
        record_order_log(db, order_id, level, order_log_message(key), context)
    except Exception:  # noqa: BLE001 - la transicion ya fue confirmada
        logger.exception(
            "order_audit_log_failed",
            extra={"order_id": int(order_id), "audit_key": key},
        )


def _raise_invalid_transition(db, order_id: int, action: str) -> None:
    current = _load_order(db, order_id)
    if current is None:
        raise ReferentialIntegrityError("order", order_id)
    error = InvalidTransitionError("order", order_id, current.status.value, action)
    logger.error(
        "order_invalid_transition",
        extra={
            "order_id": int(order_id),
            "action": action,
            "status": current.status.value,
            "attempts": current.attempts,
        },
    )
    raise error


def ingest_order(db, external_order_id: str, order_number: str, payload: Mapping[str, Any]) -> Order:
    return _ingest(db, external_order_id, order_number, payload).order


def ingest_storefront_order(db, payload: Mapping[str, Any]) -> IngestOutcome:
    external_order_id, order_number = extract_order_identity(payload)
    return _ingest(db, external_order_id, order_number, payload)


def _ingest(db, external_order_id: str, order_number: str, payload: Mapping[str, Any]) -> IngestOutcome:
    external_id = str(external_order_id or "").strip()
    number = str(order_number or "").strip()
    if not external_id or not number:
        raise ValidationError(
            message_key="order_payload_invalid",
            details="shopify_order_id y shopify_order_number son obligatorios.",
        )
    if len(external_id) > _ORDER_ID_MAX_LENGTH or len(number) > _ORDER_NUMBER_MAX_LENGTH:
        raise ValidationError(
            message_key="order_payload_invalid",
            details=(
                f"Identificador de pedido demasiado largo (id max {_ORDER_ID_MAX_LENGTH}, "
                f"numero max {_ORDER_NUMBER_MAX_LENGTH} caracteres)."
            ),
            payload={"shopify_order_id": external_id[:_ORDER_ID_MAX_LENGTH]},
        )
    snapshot = OrderSnapshot.parse(payload)

    now = db_timestamp()
    cursor = db.execute(
        """
        INSERT INTO orders (
            shopify_order_id, shopify_order_number, order_json, status, attempts, created_at, updated_at
        )
        VALUES (?, ?, ?, ?, 0, ?, ?)
        ON CONFLICT (shopify_order_id) DO NOTHING
        RETURNING id
        """,
        (external_id, number, snapshot.to_json(), OrderStatus.PENDING.value, now, now),
    )
    created = returning_row(cursor) is not None
    db.commit()

    order = find_order_by_external_id(db, external_id)
    if order is None:
        raise ReferentialIntegrityError("order", 0)
    if created:
        observe_order_transition(OrderStatus.PENDING.value)
        logger.info(
            "order_ingested",
            extra={"order_id": order.id, "shopify_order_id": external_id, "order_number": number},
        )
    else:
        logger.info(
            "order_ingest_duplicate",
            extra={"order_id": order.id, "shopify_order_id": external_id, "status": order.status.value},
        )
    return IngestOutcome(order=order, created=created)


def claim_order(db, order_id: int, *, max_attempts: int) -> Order | None:
    """Atomically moves a retryable order into PROCESSING; None when another runner got there first."""
    cursor = db.execute(
        """
        UPDATE orders
        SET status = ?,
            attempts = attempts + 1,
            updated_at = ?
        WHERE id = ?
          AND (status = ? OR (status = ? AND attempts < ?))
        """,
        (
            OrderStatus.PROCESSING.value,
            db_timestamp(),
            int(order_id),
            OrderStatus.PENDING.value,
            OrderStatus.FAILED.value,
            int(max_attempts),
        ),
    )
    claimed = int(getattr(cursor, "rowcount", 0) or 0) > 0
    db.commit()
    if not claimed:
        return None

    order = get_order(db, order_id)
    observe_order_transition(OrderStatus.PROCESSING.value)
    _write_audit(
        db,
        order.id,
        OrderLogLevel.INFO,
        "export_started",
        {"attempt": order.attempts, "max_attempts": int(max_attempts)},
    )
    return order


def begin_processing(db, order_id: int, *, max_attempts: int) -> Order:
    order = claim_order(db, order_id, max_attempts=max_attempts)
    if order is None:
        _raise_invalid_transition(db, order_id, "begin_processing")
    return order


def complete_order(db, order_id: int, artifact_name: str, artifact_path: str) -> Order:
    file_name = str(artifact_name or "").strip()
    file_path = str(artifact_path or "").strip()
    if not file_name or not file_path:
        raise ValidationError(details="El archivo plano generado debe tener nombre y ruta.")

    now = db_timestamp()
    cursor = db.execute(
        """
        UPDATE orders
        SET status = ?,
            processed_at = ?,
            flat_file_name = ?,
            flat_file_path = ?,
            error_message = NULL,
            updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            OrderStatus.COMPLETED.value,
            now,
            file_name,
            file_path,
            now,
            int(order_id),
            OrderStatus.PROCESSING.value,
        ),
    )
    if int(getattr(cursor, "rowcount", 0) or 0) == 0:
        _raise_invalid_transition(db, order_id, "complete")
    db.commit()

    order = get_order(db, order_id)
    observe_order_transition(OrderStatus.COMPLETED.value)
    _write_audit(
        db,
        order.id,
        OrderLogLevel.INFO,
        "export_completed",
        {"file_name": file_name, "file_path": file_path, "attempt": order.attempts},
    )
    return order


def fail_order(db, order_id: int, error_message: str, *, max_attempts: int | None = None) -> Order:
    details = _truncate_error(error_message)
    cursor = db.execute(
        """
        UPDATE orders
        SET status = ?,
            error_message = ?,
            updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            OrderStatus.FAILED.value,
            details,
            db_timestamp(),
            int(order_id),
            OrderStatus.PROCESSING.value,
        ),
    )
    if int(getattr(cursor, "rowcount", 0) or 0) == 0:
        _raise_invalid_transition(db, order_id, "fail")
    db.commit()

    order = get_order(db, order_id)
    exhausted = max_attempts is not None and order.is_exhausted(max_attempts)
    observe_order_transition(OrderStatus.FAILED.value)
    _write_audit(
        db,
        order.id,
        OrderLogLevel.ERROR,
        "export_failed",
        {"error": details, "attempt": order.attempts, "exhausted": exhausted},
    )
    return order


def reset_order(db, order_id: int, *, reason: str) -> Order:
    """Operator requeue: the only path that sets attempts back to zero."""
    previous = get_order(db, order_id)
    cursor = db.execute(
        """
        UPDATE orders
        SET status = ?,
            attempts = 0,
            error_message = NULL,
            updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            OrderStatus.PENDING.value,
            db_timestamp(),
            int(order_id),
            OrderStatus.FAILED.value,
        ),
    )
    if int(getattr(cursor, "rowcount", 0) or 0) == 0:
        _raise_invalid_transition(db, order_id, "reset")
    db.commit()

    order = get_order(db, order_id)
    observe_order_transition(OrderStatus.PENDING.value)
    _write_audit(
        db,
        order.id,
        OrderLogLevel.WARNING,
        "export_reset",
        {
            "reason": str(reason or "").strip() or None,
            "previous_attempts": previous.attempts,
            "previous_error": previous.error_message,
        },
    )
    logger.warning(
        "order_requeued",
        extra={"order_id": order.id, "previous_attempts": previous.attempts},
    )
    return order


def requeue_stalled_orders(
    db,
    threshold: timedelta,
    *,
    max_attempts: int,
    now: datetime | None = None,
) -> List[Order]:
    """Moves orders stuck in PROCESSING longer than ``threshold`` to FAILED.

    Attempts are left as they are, so a stalled last attempt ends exhausted.
    """
    cutoff = db_timestamp((now or utcnow()) - threshold)
    rows = db.execute(
        """
        SELECT id, attempts, updated_at
        FROM orders
        WHERE status = ? AND updated_at <= ?
        ORDER BY updated_at ASC, id ASC
        """,
        (OrderStatus.PROCESSING.value, cutoff),
    ).fetchall()

    requeued: List[Order] = []
    for row in rows:
        order_id = int(row["id"])
        details = f"Procesamiento detenido: sin respuesta desde {row['updated_at']}"
        cursor = db.execute(
            """
            UPDATE orders
            SET status = ?,
                error_message = ?,
                updated_at = ?
            WHERE id = ? AND status = ? AND updated_at <= ?
            """,
            (
                OrderStatus.FAILED.value,
                details,
                db_timestamp(now),
                order_id,
                OrderStatus.PROCESSING.value,
                cutoff,
            ),
        )
        if int(getattr(cursor, "rowcount", 0) or 0) == 0:
            continue
        db.commit()

        order = get_order(db, order_id)
        observe_order_transition(OrderStatus.FAILED.value)
        _write_audit(
            db,
            order.id,
            OrderLogLevel.WARNING,
            "export_stalled",
            {
                "attempt": order.attempts,
                "threshold_seconds": int(threshold.total_seconds()),
                "exhausted": order.is_exhausted(max_attempts),
            },
        )
        logger.warning(
            "order_stalled_requeued",
            extra={"order_id": order.id, "attempts": order.attempts},
        )
        requeued.append(order)
    return requeued


def count_orders_by_status(db) -> Dict[str, int]:
    rows = db.execute("SELECT status, COUNT(*) AS total FROM orders GROUP BY status").fetchall()
    counts = {status: 0 for status in OrderStatus.values()}
    for row in rows:
        counts[str(row["status"])] = int(row["total"] or 0)
    return counts
