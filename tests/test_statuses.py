import unittest

from siesa_bridge.domain import InventorySyncStatus, OrderLogLevel, OrderStatus, SyncBatchStatus


class StatusEnumerationTest(unittest.TestCase):
    def test_values_are_ordered_and_closed(self) -> None:
        self.assertEqual(OrderStatus.values(), ["pending", "processing", "completed", "failed"])
        self.assertEqual(OrderLogLevel.values(), ["info", "warning", "error"])
        self.assertEqual(InventorySyncStatus.values(), ["pending", "success", "failed", "skipped"])
        self.assertEqual(SyncBatchStatus.values(), ["running", "completed", "failed", "partial"])

    def test_order_predicates(self) -> None:
        self.assertTrue(OrderStatus.PENDING.is_pending)
        self.assertTrue(OrderStatus.PROCESSING.is_processing)
        self.assertTrue(OrderStatus.COMPLETED.is_completed)
        self.assertTrue(OrderStatus.FAILED.is_failed)
        self.assertFalse(OrderStatus.FAILED.is_pending)

    def test_can_retry_only_pending_or_failed(self) -> None:
        retryable = {status for status in OrderStatus if status.can_retry}
        self.assertEqual(retryable, {OrderStatus.PENDING, OrderStatus.FAILED})

    def test_log_level_predicates(self) -> None:
        self.assertTrue(OrderLogLevel.INFO.is_info)
        self.assertTrue(OrderLogLevel.WARNING.is_warning)
        self.assertTrue(OrderLogLevel.ERROR.is_error)
        self.assertFalse(OrderLogLevel.ERROR.is_info)

    def test_sync_item_terminal_states(self) -> None:
        self.assertFalse(InventorySyncStatus.PENDING.is_terminal)
        for status in (InventorySyncStatus.SUCCESS, InventorySyncStatus.FAILED, InventorySyncStatus.SKIPPED):
            self.assertTrue(status.is_terminal)
        self.assertTrue(InventorySyncStatus.SKIPPED.is_skipped)
        self.assertTrue(InventorySyncStatus.SUCCESS.is_success)

    def test_batch_finished_states(self) -> None:
        finished = {status for status in SyncBatchStatus if status.is_finished}
        self.assertEqual(finished, {SyncBatchStatus.COMPLETED, SyncBatchStatus.FAILED, SyncBatchStatus.PARTIAL})
        self.assertTrue(SyncBatchStatus.RUNNING.is_running)
        self.assertTrue(SyncBatchStatus.PARTIAL.is_partial)

    def test_parse_normalizes_and_rejects_unknown(self) -> None:
        self.assertIs(OrderStatus.parse(" Failed "), OrderStatus.FAILED)
        self.assertIs(SyncBatchStatus.parse(SyncBatchStatus.RUNNING), SyncBatchStatus.RUNNING)
        self.assertEqual(str(OrderLogLevel.WARNING), "warning")
        with self.assertRaises(ValueError):
            OrderStatus.parse("archived")


if __name__ == "__main__":
    unittest.main()
