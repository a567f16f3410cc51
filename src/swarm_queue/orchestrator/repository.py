"""Persistent queue repository over the shared JSONL store."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar
from uuid import uuid4

from swarm_queue.orchestrator.backend.base import ExecutionResult
from swarm_queue.orchestrator.lock import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_INTERVAL_SECONDS,
    DEFAULT_STALE_SECONDS,
    ClaimLock,
)
from swarm_queue.orchestrator.models import (
    WorkItem,
    WorkItemCreate,
    WorkItemStatus,
    utc_timestamp,
)
from swarm_queue.orchestrator.scheduler import select_next_claimable
from swarm_queue.orchestrator.store import JsonlRecordStore, RecordSet

logger = logging.getLogger(__name__)

T = TypeVar("T")

LAST_ERROR_MAX_CHARS = 1000


class WorkQueueRepository:
    """Queue persistence facade: every mutation runs inside one exclusive-access cycle."""

    def __init__(  # noqa: PLR0913
        self,
        store_path: Path,
        *,
        worker_id: str,
        lock_path: Path | None = None,
        stale_seconds: float = DEFAULT_STALE_SECONDS,
        retry_interval_seconds: float = DEFAULT_RETRY_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.store = JsonlRecordStore(store_path)
        self.worker_id = worker_id
        self.lock = ClaimLock(
            lock_path or store_path.with_name(f"{store_path.name}.lock"),
            worker_id=worker_id,
            stale_seconds=stale_seconds,
            retry_interval_seconds=retry_interval_seconds,
            max_attempts=max_attempts,
        )

    @property
    def store_path(self) -> Path:
        return self.store.path

    def with_exclusive_access(self, fn: Callable[[RecordSet], T]) -> T:
        """Run ``fn`` on a fresh record set under the lock and persist any change.

        Raises ``LockTimeoutError`` when the lock cannot be acquired.
        """

        with self.lock.hold():
            records = self.store.read()
            before = records.serialize()
            result = fn(records)
            after = records.serialize()
            if after != before:
                self.store.write(records)
            return result

    def enqueue(self, payload: WorkItemCreate) -> WorkItem:
        """Append a new ``ready`` item."""

        if payload.max_retries < 1:
            raise ValueError("max_retries must be >= 1.")
        if not payload.title.strip():
            raise ValueError("Work item title must not be empty.")
        now = utc_timestamp()
        item = WorkItem(
            id=payload.item_id or str(uuid4()),
            title=payload.title,
            description=payload.description,
            status=WorkItemStatus.READY,
            priority=payload.priority,
            dependencies=list(payload.dependencies),
            blockers=list(payload.blockers),
            max_retries=payload.max_retries,
            created_at=now,
            updated_at=now,
            extra=dict(payload.extra),
        )

        def _append(records: RecordSet) -> WorkItem:
            records.add(item)
            return item

        created = self.with_exclusive_access(_append)
        logger.info("Enqueued work item %s (%s)", created.id, created.priority.value)
        return created

    def claim_next(self, *, worker_id: str | None = None) -> WorkItem | None:
        """Claim the next eligible item for ``worker_id``; ``None`` when nothing qualifies."""

        owner = worker_id or self.worker_id

        def _claim(records: RecordSet) -> WorkItem | None:
            item = select_next_claimable(records.items)
            if item is None:
                return None
            item.status = WorkItemStatus.IN_PROGRESS
            item.assigned_worker = owner
            item.touch()
            return item

        claimed = self.with_exclusive_access(_claim)
        if claimed is not None:
            logger.info(
                "Worker %s claimed %s [%s] attempt=%d",
                owner,
                claimed.id,
                claimed.priority.value,
                claimed.retry_count + 1,
            )
        return claimed

    def report_result(
        self,
        *,
        item_id: str,
        result: ExecutionResult,
        worker_id: str | None = None,
    ) -> WorkItem | None:
        """Apply an attempt outcome: complete, re-queue for retry, or fail permanently.

        Returns ``None`` when the item is gone or no longer held by ``worker_id``.
        """

        owner = worker_id or self.worker_id

        def _report(records: RecordSet) -> WorkItem | None:
            item = records.get(item_id)
            if item is None:
                logger.warning("Reported item %s no longer exists", item_id)
                return None
            if item.status != WorkItemStatus.IN_PROGRESS or item.assigned_worker != owner:
                logger.warning(
                    "Skipping report for %s: status=%s assigned=%s, reporter=%s",
                    item_id,
                    item.status.value,
                    item.assigned_worker,
                    owner,
                )
                return None

            item.touch()
            if result.success:
                item.status = WorkItemStatus.COMPLETED
                item.completed_at = item.updated_at
                item.assigned_worker = None
                item.last_error = None
                return item

            item.retry_count += 1
            item.last_error = _format_error(result)
            if item.retry_count < item.max_retries:
                item.status = WorkItemStatus.READY
            else:
                item.status = WorkItemStatus.FAILED
            item.assigned_worker = None
            return item

        reported = self.with_exclusive_access(_report)
        if reported is not None:
            logger.info(
                "Worker %s reported %s -> %s (retry %d/%d)",
                owner,
                reported.id,
                reported.status.value,
                reported.retry_count,
                reported.max_retries,
            )
        return reported

    def requeue(self, *, item_id: str) -> WorkItem:
        """Manually return a permanently failed item to ``ready`` with a fresh retry budget."""

        def _requeue(records: RecordSet) -> WorkItem:
            item = records.get(item_id)
            if item is None:
                raise KeyError(item_id)
            if item.status != WorkItemStatus.FAILED:
                raise ValueError(
                    f"Only failed items can be re-queued; {item_id} is {item.status.value}.",
                )
            item.status = WorkItemStatus.READY
            item.retry_count = 0
            item.assigned_worker = None
            item.touch()
            return item

        return self.with_exclusive_access(_requeue)

    def list_items(self, *, status: WorkItemStatus | None = None) -> list[WorkItem]:
        """Lock-free snapshot; may be slightly stale under concurrent writers."""

        items = self.store.read().items
        if status is None:
            return items
        return [item for item in items if item.status == status]

    def get_item(self, item_id: str) -> WorkItem | None:
        return self.store.read().get(item_id)

    def status_counts(self) -> dict[WorkItemStatus, int]:
        counts = Counter(item.status for item in self.store.read().items)
        return {status: counts.get(status, 0) for status in WorkItemStatus}


def _format_error(result: ExecutionResult) -> str:
    message = (result.error or "Execution failed").strip()
    if result.failure_class is not None:
        message = f"[{result.failure_class.value}] {message}"
    if len(message) > LAST_ERROR_MAX_CHARS:
        message = message[:LAST_ERROR_MAX_CHARS] + "...[truncated]"
    return message
