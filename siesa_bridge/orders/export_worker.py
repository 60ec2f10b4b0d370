from __future__ import annotations

import logging
import time
from typing import Dict

from siesa_bridge.config import SyncSettings
from siesa_bridge.domain.gateways import ExportArtifact, FlatFileExporter, GatewayError, StorefrontGateway
from siesa_bridge.errors import ValidationError, as_external_failure
from siesa_bridge.observability import observe_order_export_processing
from siesa_bridge.orders.export_machine import (
    claim_order,
    complete_order,
    fail_order,
    ingest_storefront_order,
    select_due_orders,
)


logger = logging.getLogger(__name__)


def _failure_text(exc: Exception) -> str:
    if isinstance(exc, GatewayError):
        external = as_external_failure(exc)
        return f"{external.code}: {external.details or ''}"
    return f"{type(exc).__name__}: {exc}"


def _checked_artifact(artifact: ExportArtifact | None) -> ExportArtifact:
    file_name = str(getattr(artifact, "file_name", "") or "").strip()
    file_path = str(getattr(artifact, "file_path", "") or "").strip()
    if not file_name or not file_path:
        raise GatewayError(
            "El exportador no entrego nombre y ruta del archivo plano.",
            code="invalid_artifact",
            definitive=True,
        )
    return ExportArtifact(file_name=file_name, file_path=file_path)


def process_order_exports(
    db,
    *,
    settings: SyncSettings,
    exporter: FlatFileExporter,
    limit: int | None = None,
) -> Dict[str, int]:
    batch_limit = max(1, int(limit or settings.export_batch_size))
    candidates = select_due_orders(db, max_attempts=settings.max_attempts, limit=batch_limit)
    summary = {"processed": 0, "completed": 0, "failed": 0, "exhausted": 0, "skipped": 0}

    for candidate in candidates:
        started_ms = time.perf_counter()
        order = claim_order(db, candidate.id, max_attempts=settings.max_attempts)
        if order is None:
            summary["skipped"] += 1
            continue

        summary["processed"] += 1
        # KeyboardInterrupt/SystemExit no se capturan: la orden queda en processing
        # y el barrido de ordenes detenidas la devuelve a failed.
        try:
            artifact = _checked_artifact(exporter.export(order))
        except Exception as exc:  # noqa: BLE001 - cada orden falla de forma aislada
            order = fail_order(db, order.id, _failure_text(exc), max_attempts=settings.max_attempts)
            summary["failed"] += 1
            if order.is_exhausted(settings.max_attempts):
                summary["exhausted"] += 1
            outcome = order.status.value
        else:
            order = complete_order(db, order.id, artifact.file_name, artifact.file_path)
            summary["completed"] += 1
            outcome = order.status.value

        duration_ms = (time.perf_counter() - started_ms) * 1000.0
        observe_order_export_processing(duration_ms)
        logger.info(
            "order_export_processed",
            extra={
                "order_id": order.id,
                "order_number": order.shopify_order_number,
                "status": outcome,
                "attempts": order.attempts,
                "exhausted": order.is_exhausted(settings.max_attempts),
                "duration_ms": round(duration_ms, 2),
            },
        )

    logger.info("order_export_batch_completed", extra=dict(summary))
    return summary


def pull_storefront_orders(db, *, storefront: StorefrontGateway, limit: int = 50) -> Dict[str, int]:
    payloads = storefront.fetch_orders(limit=max(1, int(limit)))
    summary = {"fetched": len(payloads), "ingested": 0, "duplicates": 0, "invalid": 0}

    for payload in payloads:
        try:
            outcome = ingest_storefront_order(db, payload)
        except ValidationError as exc:
            summary["invalid"] += 1
            logger.warning(
                "order_ingest_invalid",
                extra={"details": exc.details, "missing_fields": exc.payload.get("missing_fields")},
            )
            continue
        if outcome.created:
            summary["ingested"] += 1
        else:
            summary["duplicates"] += 1

    logger.info("storefront_orders_pulled", extra=dict(summary))
    return summary
