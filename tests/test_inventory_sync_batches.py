import threading
import unittest

from siesa_bridge.domain import InventorySyncStatus, SyncBatchStatus
from siesa_bridge.errors import InvalidTransitionError, ValidationError
from siesa_bridge.inventory import (
    BatchAggregator,
    abort_batch,
    batch_summary,
    close_batch,
    derive_batch_status,
    get_batch,
    list_batches,
    open_batch,
    record_item_outcome,
)
from tests.helpers.temp_db import TempDbSandbox


class DeriveBatchStatusTest(unittest.TestCase):
    def test_policy_table(self) -> None:
        cases = [
            ((0, 0, 0), SyncBatchStatus.COMPLETED),
            ((3, 0, 3), SyncBatchStatus.COMPLETED),
            ((0, 0, 2), SyncBatchStatus.COMPLETED),
            ((0, 2, 2), SyncBatchStatus.FAILED),
            ((0, 1, 3), SyncBatchStatus.FAILED),
            ((1, 1, 3), SyncBatchStatus.PARTIAL),
            ((5, 1, 6), SyncBatchStatus.PARTIAL),
        ]
        for (successful, failed, total), expected in cases:
            with self.subTest(successful=successful, failed=failed, total=total):
                self.assertIs(derive_batch_status(successful, failed, total), expected)


class InventorySyncBatchTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="sync_batches")
        self.app = self._temp_db.build_app()
        self.db = self._temp_db.connect()

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def test_open_starts_running_with_zero_counters(self) -> None:
        batch = open_batch(self.db)

        self.assertIs(batch.status, SyncBatchStatus.RUNNING)
        self.assertIsNotNone(batch.started_at)
        self.assertIsNone(batch.finished_at)
        self.assertEqual(
            (batch.total_products, batch.successful_syncs, batch.failed_syncs, batch.skipped_syncs),
            (0, 0, 0, 0),
        )

    def test_outcomes_close_as_partial(self) -> None:
        batch = open_batch(self.db)
        for outcome in (InventorySyncStatus.SUCCESS, InventorySyncStatus.SKIPPED, "failed"):
            record_item_outcome(self.db, batch.id, outcome)

        closed = close_batch(self.db, batch.id)

        self.assertIs(closed.status, SyncBatchStatus.PARTIAL)
        self.assertEqual(closed.total_products, 3)
        self.assertEqual((closed.successful_syncs, closed.failed_syncs, closed.skipped_syncs), (1, 1, 1))
        self.assertIsNotNone(closed.finished_at)
        self.assertTrue(closed.is_consistent)

    def test_empty_batch_closes_completed(self) -> None:
        batch = open_batch(self.db)
        self.assertIs(close_batch(self.db, batch.id).status, SyncBatchStatus.COMPLETED)

    def test_only_failures_close_as_failed(self) -> None:
        batch = open_batch(self.db)
        record_item_outcome(self.db, batch.id, InventorySyncStatus.FAILED)
        record_item_outcome(self.db, batch.id, InventorySyncStatus.SKIPPED)
        self.assertIs(close_batch(self.db, batch.id).status, SyncBatchStatus.FAILED)

    def test_pending_outcome_is_rejected(self) -> None:
        batch = open_batch(self.db)
        with self.assertRaises(ValidationError):
            record_item_outcome(self.db, batch.id, InventorySyncStatus.PENDING)
        self.assertEqual(get_batch(self.db, batch.id).total_products, 0)

    def test_closed_batch_is_terminal(self) -> None:
        batch = open_batch(self.db)
        close_batch(self.db, batch.id)

        with self.assertRaises(InvalidTransitionError):
            close_batch(self.db, batch.id)
        with self.assertRaises(InvalidTransitionError):
            record_item_outcome(self.db, batch.id, InventorySyncStatus.SUCCESS)
        with self.assertRaises(InvalidTransitionError):
            abort_batch(self.db, batch.id, "tarde")

    def test_abort_bypasses_counters(self) -> None:
        batch = open_batch(self.db)
        record_item_outcome(self.db, batch.id, InventorySyncStatus.SUCCESS)

        aborted = abort_batch(self.db, batch.id, "SIESA fuera de linea")

        self.assertIs(aborted.status, SyncBatchStatus.FAILED)
        self.assertEqual(aborted.error_message, "SIESA fuera de linea")
        self.assertEqual(aborted.successful_syncs, 1)
        self.assertIsNotNone(aborted.finished_at)

    def test_concurrent_reporting_loses_no_updates(self) -> None:
        batch = open_batch(self.db)
        aggregator = BatchAggregator(batch.id)
        outcomes = [InventorySyncStatus.SUCCESS, InventorySyncStatus.FAILED, InventorySyncStatus.SKIPPED]
        errors = []

        def _report(outcome) -> None:
            db = self._temp_db.connect()
            try:
                for _ in range(10):
                    aggregator.record(db, outcome)
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
            finally:
                db.close()

        threads = [threading.Thread(target=_report, args=(outcome,)) for outcome in outcomes * 2]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(errors, [])
        closed = aggregator.close(self.db)
        self.assertEqual(closed.total_products, 60)
        self.assertEqual((closed.successful_syncs, closed.failed_syncs, closed.skipped_syncs), (20, 20, 20))
        self.assertTrue(closed.is_consistent)
        self.assertIs(closed.status, SyncBatchStatus.PARTIAL)

    def test_summary_and_listing(self) -> None:
        older = open_batch(self.db)
        close_batch(self.db, older.id)
        newer = open_batch(self.db)

        summary = batch_summary(get_batch(self.db, newer.id))
        self.assertEqual(summary["batch_id"], newer.id)
        self.assertEqual(summary["status"], "running")
        self.assertTrue(summary["is_consistent"])

        self.assertEqual([batch.id for batch in list_batches(self.db)], [newer.id, older.id])
        self.assertEqual([batch.id for batch in list_batches(self.db, status="completed")], [older.id])


if __name__ == "__main__":
    unittest.main()
