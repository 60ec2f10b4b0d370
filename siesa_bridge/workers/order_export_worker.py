from __future__ import annotations

import argparse
import os
import time
from datetime import timedelta

from siesa_bridge import create_app
from siesa_bridge.config import SyncSettings
from siesa_bridge.db import close_db, get_db
from siesa_bridge.observability import bind_request_id, new_job_request_id
from siesa_bridge.orders import process_order_exports, pull_storefront_orders, requeue_stalled_orders
from siesa_bridge.runtime import build_flat_file_exporter, build_storefront_gateway


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Worker de exportacion de pedidos hacia SIESA.")
    parser.add_argument("--once", action="store_true", help="Procesa un solo lote y termina.")
    parser.add_argument("--limit", type=int, default=0, help="Cantidad maxima de pedidos por lote.")
    parser.add_argument("--interval", type=int, default=0, help="Segundos entre lotes.")
    parser.add_argument("--skip-pull", action="store_true", help="No consulta pedidos nuevos en la tienda.")
    return parser


def run_once(app, *, settings: SyncSettings, limit: int, storefront, exporter, pull: bool = True) -> dict:
    with app.app_context():
        db = get_db()
        try:
            summary: dict = {}
            if pull:
                summary["pull"] = pull_storefront_orders(db, storefront=storefront, limit=limit)
            stalled = requeue_stalled_orders(
                db,
                timedelta(minutes=settings.stalled_minutes),
                max_attempts=settings.max_attempts,
            )
            summary["stalled"] = len(stalled)
            summary["export"] = process_order_exports(db, settings=settings, exporter=exporter, limit=limit)
            return summary
        finally:
            close_db()


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    os.environ.setdefault("DB_AUTO_INIT", "false")
    app = create_app()

    settings = SyncSettings.from_config(app.config)
    limit = max(1, int(args.limit or settings.export_batch_size))
    interval_seconds = max(1, int(args.interval or app.config.get("WORKER_INTERVAL_SECONDS", 60) or 60))
    storefront = build_storefront_gateway(app.config)
    exporter = build_flat_file_exporter(app.config)

    while True:
        with bind_request_id(new_job_request_id("worker-orders")) as run_request_id:
            summary = run_once(
                app,
                settings=settings,
                limit=limit,
                storefront=storefront,
                exporter=exporter,
                pull=not args.skip_pull,
            )
            app.logger.info(
                "order_export_worker_batch_completed",
                extra={
                    "request_id": run_request_id,
                    "fetched": summary.get("pull", {}).get("fetched", 0),
                    "ingested": summary.get("pull", {}).get("ingested", 0),
                    "stalled": summary.get("stalled", 0),
                    **summary["export"],
                },
            )
        if args.once:
            break
        time.sleep(interval_seconds)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
