from __future__ import annotations

import json
from typing import Any, Dict, List

from siesa_bridge.db import db_timestamp, returning_row
from siesa_bridge.domain.records import OrderLog
from siesa_bridge.domain.statuses import OrderLogLevel
from siesa_bridge.errors import ReferentialIntegrityError


def _json_dumps(value: Dict[str, Any]) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def record_order_log(
    db,
    order_id: int,
    level: OrderLogLevel | str,
    message: str,
    context: Dict[str, Any] | None = None,
) -> OrderLog:
    """Appends one audit entry for an order. Existing entries are never touched."""
    resolved_level = OrderLogLevel.parse(level)
    exists = db.execute("SELECT id FROM orders WHERE id = ?", (int(order_id),)).fetchone()
    if not exists:
        raise ReferentialIntegrityError("order", order_id)

    cursor = db.execute(
        """
        INSERT INTO order_logs (order_id, level, message, context, created_at)
        VALUES (?, ?, ?, ?, ?)
        RETURNING id, order_id, level, message, context, created_at
        """,
        (
            int(order_id),
            resolved_level.value,
            str(message or ""),
            _json_dumps(dict(context or {})) if context else None,
            db_timestamp(),
        ),
    )
    row = returning_row(cursor)
    db.commit()
    return OrderLog.from_row(row)


def list_order_logs(db, order_id: int, *, level: OrderLogLevel | str | None = None) -> List[OrderLog]:
    params: list[object] = [int(order_id)]
    level_clause = ""
    if level is not None:
        level_clause = "AND level = ?"
        params.append(OrderLogLevel.parse(level).value)
    rows = db.execute(
        f"""
        SELECT id, order_id, level, message, context, created_at
        FROM order_logs
        WHERE order_id = ?
          {level_clause}
        ORDER BY id ASC
        """,
        params,
    ).fetchall()
    return [OrderLog.from_row(row) for row in rows]
