from __future__ import annotations

import argparse
import os
import time

from siesa_bridge import create_app
from siesa_bridge.config import SyncSettings
from siesa_bridge.db import close_db, get_db
from siesa_bridge.errors import FatalBatchError
from siesa_bridge.inventory import batch_summary, run_inventory_reconciliation
from siesa_bridge.observability import bind_request_id, new_job_request_id
from siesa_bridge.runtime import build_connect_fn, build_erp_gateway, build_storefront_gateway


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Worker de sincronizacion de inventario SIESA -> tienda.")
    parser.add_argument("--once", action="store_true", help="Ejecuta una sola reconciliacion y termina.")
    parser.add_argument("--interval", type=int, default=0, help="Segundos entre reconciliaciones.")
    return parser


def run_once(app, *, settings: SyncSettings, erp, storefront) -> dict:
    with app.app_context():
        db = get_db()
        try:
            batch = run_inventory_reconciliation(
                db,
                settings=settings,
                erp=erp,
                storefront=storefront,
                connect_fn=build_connect_fn(app.config),
            )
            return batch_summary(batch)
        finally:
            close_db()


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    os.environ.setdefault("DB_AUTO_INIT", "false")
    app = create_app()

    settings = SyncSettings.from_config(app.config)
    interval_seconds = max(1, int(args.interval or app.config.get("WORKER_INTERVAL_SECONDS", 60) or 60))
    erp = build_erp_gateway(app.config)
    storefront = build_storefront_gateway(app.config)

    exit_code = 0
    while True:
        with bind_request_id(new_job_request_id("worker-inventory")) as run_request_id:
            try:
                summary = run_once(app, settings=settings, erp=erp, storefront=storefront)
            except FatalBatchError as exc:
                exit_code = 1
                app.logger.error(
                    "inventory_sync_worker_batch_aborted",
                    extra={"request_id": run_request_id, "details": exc.details, **exc.payload},
                )
            else:
                exit_code = 0
                app.logger.info(
                    "inventory_sync_worker_batch_completed",
                    extra={"request_id": run_request_id, **summary},
                )
        if args.once:
            break
        time.sleep(interval_seconds)

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
