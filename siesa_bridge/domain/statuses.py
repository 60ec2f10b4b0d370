from __future__ import annotations

from enum import Enum
from typing import List


class _StatusEnum(str, Enum):
    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]

    @classmethod
    def parse(cls, value: object):
        if isinstance(value, cls):
            return value
        return cls(str(value or "").strip().lower())

    def __str__(self) -> str:
        return self.value


class OrderStatus(_StatusEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_pending(self) -> bool:
        return self is OrderStatus.PENDING

    @property
    def is_processing(self) -> bool:
        return self is OrderStatus.PROCESSING

    @property
    def is_completed(self) -> bool:
        return self is OrderStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self is OrderStatus.FAILED

    @property
    def can_retry(self) -> bool:
        # PROCESSING is an in-flight attempt and must not be dispatched again.
        return self in (OrderStatus.PENDING, OrderStatus.FAILED)


class OrderLogLevel(_StatusEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def is_info(self) -> bool:
        return self is OrderLogLevel.INFO

    @property
    def is_warning(self) -> bool:
        return self is OrderLogLevel.WARNING

    @property
    def is_error(self) -> bool:
        return self is OrderLogLevel.ERROR


class InventorySyncStatus(_StatusEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_pending(self) -> bool:
        return self is InventorySyncStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self is InventorySyncStatus.SUCCESS

    @property
    def is_failed(self) -> bool:
        return self is InventorySyncStatus.FAILED

    @property
    def is_skipped(self) -> bool:
        return self is InventorySyncStatus.SKIPPED

    @property
    def is_terminal(self) -> bool:
        return self is not InventorySyncStatus.PENDING


class SyncBatchStatus(_StatusEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_running(self) -> bool:
        return self is SyncBatchStatus.RUNNING

    @property
    def is_completed(self) -> bool:
        return self is SyncBatchStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self is SyncBatchStatus.FAILED

    @property
    def is_partial(self) -> bool:
        return self is SyncBatchStatus.PARTIAL

    @property
    def is_finished(self) -> bool:
        return self in (SyncBatchStatus.COMPLETED, SyncBatchStatus.FAILED, SyncBatchStatus.PARTIAL)
