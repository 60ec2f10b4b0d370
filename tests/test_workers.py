import os
import unittest
from unittest.mock import patch

from siesa_bridge.config import SyncSettings
from siesa_bridge.domain import OrderStatus
from siesa_bridge.orders import list_orders
from siesa_bridge.simulator import SimulatedErp, SimulatedFlatFileExporter, SimulatedStorefront
from siesa_bridge.workers import inventory_sync_worker, order_export_worker
from tests.helpers.temp_db import TempDbSandbox


class WorkerRunOnceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="workers")
        self.app = self._temp_db.build_app()
        self.db = self._temp_db.connect()

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def test_order_worker_pulls_and_exports(self) -> None:
        summary = order_export_worker.run_once(
            self.app,
            settings=SyncSettings(),
            limit=10,
            storefront=SimulatedStorefront(),
            exporter=SimulatedFlatFileExporter(),
        )

        self.assertEqual(summary["pull"]["ingested"], 2)
        self.assertEqual(summary["stalled"], 0)
        self.assertEqual(summary["export"]["completed"], 2)
        self.assertEqual({order.status for order in list_orders(self.db)}, {OrderStatus.COMPLETED})

    def test_order_worker_can_skip_pull(self) -> None:
        summary = order_export_worker.run_once(
            self.app,
            settings=SyncSettings(),
            limit=10,
            storefront=SimulatedStorefront(),
            exporter=SimulatedFlatFileExporter(),
            pull=False,
        )

        self.assertNotIn("pull", summary)
        self.assertEqual(summary["export"]["processed"], 0)

    def test_inventory_worker_returns_batch_summary(self) -> None:
        summary = inventory_sync_worker.run_once(
            self.app,
            settings=SyncSettings(sync_concurrency=2),
            erp=SimulatedErp(),
            storefront=SimulatedStorefront(),
        )

        self.assertEqual(summary["status"], "completed")
        self.assertEqual(summary["total_products"], 4)

    def test_inventory_worker_main_reports_fatal_batch(self) -> None:
        unavailable = SimulatedErp(unavailable=True)
        with patch.dict(os.environ), patch.object(inventory_sync_worker, "create_app", return_value=self.app):
            with patch.object(inventory_sync_worker, "build_erp_gateway", return_value=unavailable):
                exit_code = inventory_sync_worker.main(["--once"])

        self.assertEqual(exit_code, 1)

    def test_order_worker_main_once(self) -> None:
        with patch.dict(os.environ), patch.object(order_export_worker, "create_app", return_value=self.app):
            exit_code = order_export_worker.main(["--once", "--limit", "5"])

        self.assertEqual(exit_code, 0)
        self.assertEqual(len(list_orders(self.db, status="completed")), 2)


if __name__ == "__main__":
    unittest.main()
