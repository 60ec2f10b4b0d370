import json
import logging
import unittest

from siesa_bridge.config import SyncSettings
from siesa_bridge.inventory import run_inventory_reconciliation
from siesa_bridge.observability import (
    JsonLogFormatter,
    bind_request_id,
    current_request_id,
    reset_metrics_for_tests,
    set_log_request_id,
)
from siesa_bridge.orders import process_order_exports, pull_storefront_orders
from siesa_bridge.simulator import SimulatedErp, SimulatedFlatFileExporter, SimulatedStorefront
from tests.helpers.temp_db import TempDbSandbox


class ObservabilityPrometheusTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="observability_metrics")
        self.app = self._temp_db.build_app()
        self.client = self.app.test_client()
        self.db = self._temp_db.connect()
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def test_metrics_endpoint_exposes_sync_metrics(self) -> None:
        pull_storefront_orders(self.db, storefront=SimulatedStorefront())
        process_order_exports(
            self.db,
            settings=SyncSettings(),
            exporter=SimulatedFlatFileExporter(failing_orders=["1002"]),
        )
        run_inventory_reconciliation(
            self.db,
            settings=SyncSettings(sync_concurrency=1),
            erp=SimulatedErp(),
            storefront=SimulatedStorefront(),
        )
        self.client.get("/health")

        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertIn("text/plain", response.headers.get("Content-Type") or "")

        payload = response.get_data(as_text=True)
        self.assertIn("http_request_total", payload)
        self.assertIn("http_request_duration_ms_bucket", payload)
        self.assertIn('order_export_queue_size{status="completed"} 1', payload)
        self.assertIn('order_export_queue_size{status="failed"} 1', payload)
        self.assertIn('order_transition_total{to_status="processing"} 2', payload)
        self.assertIn("order_export_processing_time_bucket", payload)
        self.assertIn('inventory_sync_item_total{outcome="success"}', payload)
        self.assertIn('inventory_sync_item_total{outcome="skipped"} 1', payload)
        self.assertIn('inventory_sync_batch_total{status="completed"} 1', payload)

    def test_health_reports_sync_state(self) -> None:
        pull_storefront_orders(self.db, storefront=SimulatedStorefront())

        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["db"], "sqlite")
        self.assertEqual(payload["sync"]["orders"]["pending"], 2)
        self.assertIsNone(payload["sync"]["last_inventory_batch"])
        self.assertEqual(payload["metrics"]["order_transition_total"], {"pending": 2})

    def test_json_formatter_includes_request_id_and_extras(self) -> None:
        formatter = JsonLogFormatter()
        set_log_request_id("job-123")
        record = logging.LogRecord(
            name="siesa_bridge.orders.export_worker",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="order_export_processed",
            args=(),
            exc_info=None,
        )
        record.order_id = 42
        record.status = "completed"

        payload = json.loads(formatter.format(record))

        self.assertEqual(payload["message"], "order_export_processed")
        self.assertEqual(payload["level"], "info")
        self.assertEqual(payload["request_id"], "job-123")
        self.assertEqual(payload["order_id"], 42)
        self.assertEqual(payload["status"], "completed")

    def test_bind_request_id_restores_previous_value(self) -> None:
        set_log_request_id("outer")
        with bind_request_id("inner") as bound:
            self.assertEqual(bound, "inner")
            self.assertEqual(current_request_id(), "inner")
        self.assertEqual(current_request_id(), "outer")


if __name__ == "__main__":
    unittest.main()
