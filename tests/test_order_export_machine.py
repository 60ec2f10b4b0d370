import threading
import unittest
from datetime import timedelta
from unittest.mock import patch

from siesa_bridge.db import utcnow
from siesa_bridge.domain import OrderLogLevel, OrderStatus
from siesa_bridge.errors import InvalidTransitionError, ReferentialIntegrityError, ValidationError
from siesa_bridge.orders import (
    begin_processing,
    claim_order,
    complete_order,
    fail_order,
    get_order,
    ingest_order,
    list_order_logs,
    list_orders,
    requeue_stalled_orders,
    reset_order,
)
from tests.helpers.temp_db import TempDbSandbox
from tests.order_utils import ingest_sample, sample_order_payload


MAX_ATTEMPTS = 3


class OrderExportMachineTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="order_machine")
        self.app = self._temp_db.build_app()
        self.db = self._temp_db.connect()

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def test_order_1001_fails_then_completes_on_retry(self) -> None:
        order = ingest_sample(self.db)
        self.assertIs(order.status, OrderStatus.PENDING)
        self.assertEqual(order.attempts, 0)
        self.assertEqual(len(order.snapshot.line_items), 2)
        self.assertAlmostEqual(order.snapshot.total_price, 59.90)

        order = begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)
        self.assertIs(order.status, OrderStatus.PROCESSING)
        self.assertEqual(order.attempts, 1)

        order = fail_order(self.db, order.id, "SIESA no respondio (timeout)")
        self.assertIs(order.status, OrderStatus.FAILED)
        self.assertEqual(order.attempts, 1)
        self.assertEqual(order.error_message, "SIESA no respondio (timeout)")
        self.assertIsNone(order.processed_at)
        self.assertEqual(len(list_order_logs(self.db, order.id, level=OrderLogLevel.ERROR)), 1)

        order = begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)
        self.assertIs(order.status, OrderStatus.PROCESSING)
        self.assertEqual(order.attempts, 2)

        order = complete_order(self.db, order.id, "PEDIDO_1001.txt", "/siesa/pedidos/PEDIDO_1001.txt")
        self.assertIs(order.status, OrderStatus.COMPLETED)
        self.assertIsNotNone(order.processed_at)
        self.assertEqual(order.flat_file_name, "PEDIDO_1001.txt")
        self.assertEqual(order.flat_file_path, "/siesa/pedidos/PEDIDO_1001.txt")
        self.assertIsNone(order.error_message)

        levels = [entry.level for entry in list_order_logs(self.db, order.id)]
        self.assertEqual(
            levels,
            [OrderLogLevel.INFO, OrderLogLevel.ERROR, OrderLogLevel.INFO, OrderLogLevel.INFO],
        )

    def test_ingest_is_idempotent(self) -> None:
        first = ingest_sample(self.db)
        begin_processing(self.db, first.id, max_attempts=MAX_ATTEMPTS)

        changed_payload = sample_order_payload(total_price="999.00")
        second = ingest_order(self.db, str(changed_payload["id"]), "#1001", changed_payload)

        self.assertEqual(second.id, first.id)
        self.assertIs(second.status, OrderStatus.PROCESSING)
        self.assertEqual(second.attempts, 1)
        self.assertAlmostEqual(second.snapshot.total_price, 59.90)
        self.assertEqual(len(list_orders(self.db)), 1)

    def test_ingest_requires_identity(self) -> None:
        with self.assertRaises(ValidationError):
            ingest_order(self.db, "", "#1", {"id": ""})
        with self.assertRaises(ValidationError):
            ingest_order(self.db, "77", "#77", "not-a-mapping")
        self.assertEqual(list_orders(self.db), [])

    def test_ingest_rejects_overlong_order_number(self) -> None:
        payload = sample_order_payload(number="#" + "9" * 60)
        with self.assertRaises(ValidationError) as ctx:
            ingest_order(self.db, str(payload["id"]), payload["name"], payload)
        self.assertIn("demasiado largo", ctx.exception.details)
        self.assertEqual(list_orders(self.db), [])

        exact = "#" + "9" * 49
        order = ingest_order(self.db, "5550007777", exact, sample_order_payload(5550007777, exact))
        self.assertEqual(order.shopify_order_number, exact)

    def test_begin_processing_rejects_processing_and_completed(self) -> None:
        order = ingest_sample(self.db)
        begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)

        with self.assertRaises(InvalidTransitionError) as ctx:
            begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)
        self.assertEqual(ctx.exception.from_status, "processing")
        self.assertEqual(ctx.exception.http_status, 409)

        complete_order(self.db, order.id, "PEDIDO_1001.txt", "/siesa/pedidos/PEDIDO_1001.txt")
        with self.assertRaises(InvalidTransitionError):
            begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)
        self.assertEqual(get_order(self.db, order.id).attempts, 1)

    def test_complete_and_fail_require_processing(self) -> None:
        order = ingest_sample(self.db)
        with self.assertRaises(InvalidTransitionError):
            complete_order(self.db, order.id, "PEDIDO_1001.txt", "/siesa/pedidos/PEDIDO_1001.txt")
        with self.assertRaises(InvalidTransitionError):
            fail_order(self.db, order.id, "sin iniciar")
        with self.assertRaises(ReferentialIntegrityError):
            fail_order(self.db, 424242, "no existe")
        self.assertIs(get_order(self.db, order.id).status, OrderStatus.PENDING)

    def test_complete_requires_artifact(self) -> None:
        order = ingest_sample(self.db)
        begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)
        with self.assertRaises(ValidationError):
            complete_order(self.db, order.id, "", "")
        self.assertIs(get_order(self.db, order.id).status, OrderStatus.PROCESSING)

    def test_exhausted_order_stays_failed_until_reset(self) -> None:
        order = ingest_sample(self.db)
        for attempt in range(1, MAX_ATTEMPTS + 1):
            order = begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)
            self.assertEqual(order.attempts, attempt)
            order = fail_order(self.db, order.id, f"intento {attempt}", max_attempts=MAX_ATTEMPTS)

        self.assertTrue(order.is_exhausted(MAX_ATTEMPTS))
        self.assertEqual(order.error_message, f"intento {MAX_ATTEMPTS}")
        last_failure = list_order_logs(self.db, order.id, level="error")[-1]
        self.assertTrue(last_failure.context["exhausted"])

        with self.assertRaises(InvalidTransitionError):
            begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)

        order = reset_order(self.db, order.id, reason="SIESA restablecido")
        self.assertIs(order.status, OrderStatus.PENDING)
        self.assertEqual(order.attempts, 0)
        self.assertIsNone(order.error_message)
        warning = list_order_logs(self.db, order.id, level="warning")[-1]
        self.assertEqual(warning.context["previous_attempts"], MAX_ATTEMPTS)
        self.assertEqual(warning.context["reason"], "SIESA restablecido")

        order = begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)
        self.assertEqual(order.attempts, 1)

    def test_reset_only_from_failed(self) -> None:
        order = ingest_sample(self.db)
        with self.assertRaises(InvalidTransitionError):
            reset_order(self.db, order.id, reason="no aplica")

    def test_error_message_is_truncated(self) -> None:
        order = ingest_sample(self.db)
        begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)
        order = fail_order(self.db, order.id, "x" * 5000)
        self.assertEqual(len(order.error_message), 1000)

    def test_requeue_stalled_marks_failed_without_touching_attempts(self) -> None:
        stalled = ingest_sample(self.db)
        fresh = ingest_sample(self.db, order_id=5550001002, number="#1002")
        begin_processing(self.db, stalled.id, max_attempts=MAX_ATTEMPTS)
        begin_processing(self.db, fresh.id, max_attempts=MAX_ATTEMPTS)
        self.db.execute(
            "UPDATE orders SET updated_at = ? WHERE id = ?",
            ("2000-01-01 00:00:00", stalled.id),
        )

        requeued = requeue_stalled_orders(self.db, timedelta(minutes=30), max_attempts=MAX_ATTEMPTS)

        self.assertEqual([order.id for order in requeued], [stalled.id])
        stalled = get_order(self.db, stalled.id)
        self.assertIs(stalled.status, OrderStatus.FAILED)
        self.assertEqual(stalled.attempts, 1)
        self.assertIn("2000-01-01", stalled.error_message)
        self.assertIs(get_order(self.db, fresh.id).status, OrderStatus.PROCESSING)
        self.assertEqual(list_order_logs(self.db, stalled.id, level="warning")[-1].context["attempt"], 1)

        again = requeue_stalled_orders(self.db, timedelta(minutes=30), max_attempts=MAX_ATTEMPTS)
        self.assertEqual(again, [])

    def test_requeue_stalled_with_future_clock(self) -> None:
        order = ingest_sample(self.db)
        begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)

        requeued = requeue_stalled_orders(
            self.db,
            timedelta(minutes=30),
            max_attempts=MAX_ATTEMPTS,
            now=utcnow() + timedelta(hours=1),
        )
        self.assertEqual(len(requeued), 1)
        self.assertIs(requeued[0].status, OrderStatus.FAILED)

    def test_audit_failure_does_not_roll_back_transition(self) -> None:
        order = ingest_sample(self.db)
        with patch("siesa_bridge.orders.export_machine.record_order_log", side_effect=RuntimeError("disk full")):
            with self.assertLogs("siesa_bridge.orders.export_machine", level="ERROR") as captured:
                order = begin_processing(self.db, order.id, max_attempts=MAX_ATTEMPTS)

        self.assertIs(order.status, OrderStatus.PROCESSING)
        self.assertIs(get_order(self.db, order.id).status, OrderStatus.PROCESSING)
        self.assertTrue(any("order_audit_log_failed" in line for line in captured.output))
        self.assertEqual(list_order_logs(self.db, order.id), [])

    def test_concurrent_dispatch_claims_order_once(self) -> None:
        order = ingest_sample(self.db)
        barrier = threading.Barrier(2)
        results = []
        errors = []

        def _worker() -> None:
            db = self._temp_db.connect()
            try:
                barrier.wait()
                results.append(claim_order(db, order.id, max_attempts=MAX_ATTEMPTS))
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
            finally:
                db.close()

        threads = [threading.Thread(target=_worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(errors, [])
        claimed = [result for result in results if result is not None]
        self.assertEqual(len(claimed), 1)
        self.assertEqual(results.count(None), 1)
        current = get_order(self.db, order.id)
        self.assertIs(current.status, OrderStatus.PROCESSING)
        self.assertEqual(current.attempts, 1)

    def test_list_orders_filters_by_status(self) -> None:
        first = ingest_sample(self.db)
        ingest_sample(self.db, order_id=5550001002, number="#1002")
        begin_processing(self.db, first.id, max_attempts=MAX_ATTEMPTS)

        pending = list_orders(self.db, status="pending")
        processing = list_orders(self.db, status=OrderStatus.PROCESSING)
        self.assertEqual([order.shopify_order_number for order in pending], ["#1002"])
        self.assertEqual([order.id for order in processing], [first.id])


if __name__ == "__main__":
    unittest.main()
