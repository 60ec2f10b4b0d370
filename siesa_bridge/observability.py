from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)
_EXPORT_PROCESSING_BUCKETS_MS = (10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0, 30000.0)

_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))
    try:
        yield _LOG_REQUEST_ID_CTX.get()
    finally:
        _LOG_REQUEST_ID_CTX.reset(token)


def new_job_request_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._http_request_total: Dict[tuple[str, str, str], int] = {}
        self._http_request_duration_ms: Dict[tuple[str, str], dict] = {}
        self._order_transition_total: Dict[str, int] = {}
        self._order_export_processing_time = self._new_histogram_state(_EXPORT_PROCESSING_BUCKETS_MS)
        self._inventory_item_total: Dict[str, int] = {}
        self._inventory_batch_total: Dict[str, int] = {}

    @staticmethod
    def _bucket_label(limit: float) -> str:
        return f"{limit:g}"

    @classmethod
    def _new_histogram_state(cls, limits: tuple[float, ...]) -> dict:
        return {
            "count": 0,
            "sum": 0.0,
            "buckets": {cls._bucket_label(limit): 0 for limit in limits} | {"+Inf": 0},
        }

    @classmethod
    def _observe_histogram(cls, state: dict, value: float, limits: tuple[float, ...]) -> None:
        duration = max(0.0, float(value))
        state["count"] += 1
        state["sum"] += duration
        for limit in limits:
            if duration <= limit:
                key = cls._bucket_label(limit)
                state["buckets"][key] = int(state["buckets"].get(key, 0)) + 1
        state["buckets"]["+Inf"] = int(state["count"])

    @staticmethod
    def _bump(counter: Dict, key) -> None:
        counter[key] = int(counter.get(key, 0)) + 1

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = str(method or "GET").strip().upper() or "GET"
        route_key = str(route or "unknown").strip() or "unknown"
        status_key = str(int(status_code))
        with self._lock:
            self._bump(self._http_request_total, (method_key, route_key, status_key))
            histogram = self._http_request_duration_ms.setdefault(
                (method_key, route_key),
                self._new_histogram_state(_HTTP_DURATION_BUCKETS_MS),
            )
            self._observe_histogram(histogram, duration_ms, _HTTP_DURATION_BUCKETS_MS)

    def observe_order_transition(self, to_status: str) -> None:
        with self._lock:
            self._bump(self._order_transition_total, str(to_status or "unknown"))

    def observe_order_export_processing(self, duration_ms: float) -> None:
        with self._lock:
            self._observe_histogram(self._order_export_processing_time, duration_ms, _EXPORT_PROCESSING_BUCKETS_MS)

    def observe_inventory_item(self, outcome: str) -> None:
        with self._lock:
            self._bump(self._inventory_item_total, str(outcome or "unknown"))

    def observe_inventory_batch(self, status: str) -> None:
        with self._lock:
            self._bump(self._inventory_batch_total, str(status or "unknown"))

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "http_request_total": dict(self._http_request_total),
                "http_request_duration_ms": {
                    key: {"count": value["count"], "sum": value["sum"], "buckets": dict(value["buckets"])}
                    for key, value in self._http_request_duration_ms.items()
                },
                "order_transition_total": dict(self._order_transition_total),
                "order_export_processing_time": {
                    "count": self._order_export_processing_time["count"],
                    "sum": self._order_export_processing_time["sum"],
                    "buckets": dict(self._order_export_processing_time["buckets"]),
                },
                "inventory_item_total": dict(self._inventory_item_total),
                "inventory_batch_total": dict(self._inventory_batch_total),
            }

    def reset(self) -> None:
        with self._lock:
            self._http_request_total.clear()
            self._http_request_duration_ms.clear()
            self._order_transition_total.clear()
            self._order_export_processing_time = self._new_histogram_state(_EXPORT_PROCESSING_BUCKETS_MS)
            self._inventory_item_total.clear()
            self._inventory_batch_total.clear()


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_order_transition(to_status: str) -> None:
    _METRICS.observe_order_transition(to_status)


def observe_order_export_processing(duration_ms: float) -> None:
    _METRICS.observe_order_export_processing(duration_ms)


def observe_inventory_item(outcome: str) -> None:
    _METRICS.observe_inventory_item(outcome)


def observe_inventory_batch(status: str) -> None:
    _METRICS.observe_inventory_batch(status)


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: dict[str, object] | None = None) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels.items()))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


def _histogram_lines(name: str, state: dict, labels: dict[str, object] | None = None) -> list[str]:
    base_labels = dict(labels or {})
    lines = [
        _prom_line(f"{name}_bucket", int(bucket_value), labels=base_labels | {"le": le_label})
        for le_label, bucket_value in state["buckets"].items()
    ]
    lines.append(_prom_line(f"{name}_sum", float(state["sum"]), labels=base_labels or None))
    lines.append(_prom_line(f"{name}_count", int(state["count"]), labels=base_labels or None))
    return lines


def prometheus_metrics_text(*, sync_state: dict | None = None) -> str:
    snapshot = _METRICS.snapshot()
    lines: list[str] = []

    lines.append("# HELP http_request_total Total HTTP requests by method, route and status.")
    lines.append("# TYPE http_request_total counter")
    for (method, route, status), value in sorted(snapshot["http_request_total"].items()):
        lines.append(
            _prom_line("http_request_total", int(value), labels={"method": method, "route": route, "status": status})
        )

    lines.append("# HELP http_request_duration_ms HTTP request duration in milliseconds.")
    lines.append("# TYPE http_request_duration_ms histogram")
    for (method, route), hist in sorted(snapshot["http_request_duration_ms"].items()):
        lines.extend(_histogram_lines("http_request_duration_ms", hist, {"method": method, "route": route}))

    order_counts = ((sync_state or {}).get("orders") or {}) if isinstance(sync_state, dict) else {}
    lines.append("# HELP order_export_queue_size Orders by export status.")
    lines.append("# TYPE order_export_queue_size gauge")
    for status in ("pending", "processing", "completed", "failed"):
        lines.append(_prom_line("order_export_queue_size", int(order_counts.get(status) or 0), labels={"status": status}))

    lines.append("# HELP order_transition_total Order status transitions applied by the export state machine.")
    lines.append("# TYPE order_transition_total counter")
    for status, value in sorted(snapshot["order_transition_total"].items()):
        lines.append(_prom_line("order_transition_total", int(value), labels={"to_status": status}))

    lines.append("# HELP order_export_processing_time Order export attempt duration in milliseconds.")
    lines.append("# TYPE order_export_processing_time histogram")
    lines.extend(_histogram_lines("order_export_processing_time", snapshot["order_export_processing_time"]))

    lines.append("# HELP inventory_sync_item_total Inventory sync items resolved by outcome.")
    lines.append("# TYPE inventory_sync_item_total counter")
    for outcome, value in sorted(snapshot["inventory_item_total"].items()):
        lines.append(_prom_line("inventory_sync_item_total", int(value), labels={"outcome": outcome}))

    lines.append("# HELP inventory_sync_batch_total Inventory sync batches finished by status.")
    lines.append("# TYPE inventory_sync_batch_total counter")
    for status, value in sorted(snapshot["inventory_batch_total"].items()):
        lines.append(_prom_line("inventory_sync_batch_total", int(value), labels={"status": status}))

    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)


def sync_health(db) -> dict:
    order_rows = db.execute(
        """
        SELECT status, COUNT(*) AS total
        FROM orders
        GROUP BY status
        """
    ).fetchall()
    orders = {"pending": 0, "processing": 0, "completed": 0, "failed": 0}
    for row in order_rows:
        status = str(row["status"] or "").strip().lower()
        if status in orders:
            orders[status] = int(row["total"] or 0)

    last_batch = db.execute(
        """
        SELECT id, status, started_at, finished_at, total_products, successful_syncs, failed_syncs, skipped_syncs
        FROM inventory_sync_batches
        ORDER BY id DESC
        LIMIT 1
        """
    ).fetchone()
    batch_payload = None
    if last_batch:
        batch_payload = {key: last_batch[key] for key in last_batch.keys()}
        for key in ("started_at", "finished_at"):
            value = batch_payload.get(key)
            if isinstance(value, datetime):
                batch_payload[key] = value.isoformat()

    return {
        "orders": orders,
        "last_inventory_batch": batch_payload,
    }
