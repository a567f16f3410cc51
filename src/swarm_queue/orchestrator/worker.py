"""Queue worker that claims work items and runs them through a harness."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from swarm_queue.orchestrator.backend.base import (
    ExecutionResult,
    HarnessBackend,
    ProgressEvent,
)
from swarm_queue.orchestrator.errors import LockTimeoutError
from swarm_queue.orchestrator.models import FailureClass, WorkItem, WorkItemStatus
from swarm_queue.orchestrator.prompts import build_execution_request
from swarm_queue.orchestrator.repository import WorkQueueRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    idle_polls: int = 0
    lock_timeouts: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.retried += other.retried
        self.failed += other.failed
        self.idle_polls += other.idle_polls
        self.lock_timeouts += other.lock_timeouts


@dataclass(slots=True)
class PendingReport:
    """Attempt outcome that could not be persisted because the lock timed out."""

    item_id: str
    result: ExecutionResult


class QueueWorker:
    """Claims ready items, executes them outside the lock, and reports outcomes."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: WorkQueueRepository,
        harness: HarnessBackend,
        worker_id: str,
        work_dir: Path,
        poll_interval_seconds: float = 10.0,
        task_timeout_ms: int | None = None,
    ) -> None:
        self.repository = repository
        self.harness = harness
        self.worker_id = worker_id
        self.work_dir = work_dir
        self.poll_interval_seconds = poll_interval_seconds
        self.task_timeout_ms = task_timeout_ms
        self._pending_reports: list[PendingReport] = []
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    @property
    def pending_reports(self) -> list[PendingReport]:
        return list(self._pending_reports)

    def request_stop(self) -> None:
        self._stop_requested = True

    def run_once(self) -> WorkerRunSummary:
        """Flush pending reports, then claim and process at most one item."""

        summary = WorkerRunSummary()
        if not self._flush_pending_reports(summary):
            # Never take new work while an earlier outcome is still unrecorded.
            return summary
        if self._stop_requested:
            return summary

        try:
            item = self.repository.claim_next(worker_id=self.worker_id)
        except LockTimeoutError as error:
            logger.warning("Worker %s could not claim: %s", self.worker_id, error)
            summary.lock_timeouts += 1
            return summary
        if item is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        result = self._execute(item)
        try:
            reported = self.repository.report_result(
                item_id=item.id,
                result=result,
                worker_id=self.worker_id,
            )
        except LockTimeoutError as error:
            logger.warning(
                "Worker %s could not report %s, will retry: %s",
                self.worker_id,
                item.id,
                error,
            )
            summary.lock_timeouts += 1
            self._pending_reports.append(PendingReport(item_id=item.id, result=result))
            return summary
        _count_outcome(summary, reported)
        return summary

    def run_loop(
        self,
        *,
        max_tasks: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Run until stopped by a signal or one of the optional limits.

        Args:
            max_tasks: Stop after processing this many items (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty polls
                (None = keep polling forever).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested:
                if max_tasks is not None and aggregate.processed >= max_tasks:
                    break

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed:
                    consecutive_idle = 0
                    continue
                if summary.idle_polls:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                self._sleep_with_stop(self.poll_interval_seconds)

        if self._pending_reports:
            self._flush_pending_reports(aggregate)
        if self._pending_reports:
            logger.warning(
                "Worker %s exiting with %d unreported outcome(s): %s",
                self.worker_id,
                len(self._pending_reports),
                ", ".join(pending.item_id for pending in self._pending_reports),
            )
        if self._stop_signal_name is not None:
            logger.info("Worker %s stopped by %s", self.worker_id, self._stop_signal_name)
        return aggregate

    def _execute(self, item: WorkItem) -> ExecutionResult:
        request = build_execution_request(
            item,
            work_dir=self.work_dir,
            timeout_ms=self.task_timeout_ms,
        )

        def _on_progress(event: ProgressEvent) -> None:
            logger.info(
                "%s %s: %d%% %s",
                self.worker_id,
                item.id,
                event.percent_complete,
                event.description,
            )

        def _on_output(chunk: str) -> None:
            logger.debug("%s %s output: %s", self.worker_id, item.id, chunk.rstrip())

        logger.info("Worker %s executing %s via %s", self.worker_id, item.id, self.harness.name)
        started = time.monotonic()
        try:
            result = self.harness.execute(request, on_progress=_on_progress, on_output=_on_output)
        except Exception as error:  # noqa: BLE001
            logger.exception("Harness %s raised while running %s", self.harness.name, item.id)
            result = ExecutionResult(
                success=False,
                output="",
                duration_ms=int((time.monotonic() - started) * 1000),
                error=f"Harness raised {type(error).__name__}: {error}",
                failure_class=FailureClass.HARNESS_ERROR,
            )
        if result.success:
            logger.info(
                "Worker %s finished %s in %dms (files: +%d ~%d -%d)",
                self.worker_id,
                item.id,
                result.duration_ms,
                len(result.files_created),
                len(result.files_modified),
                len(result.files_deleted),
            )
        else:
            logger.warning(
                "Worker %s attempt on %s failed [%s]: %s",
                self.worker_id,
                item.id,
                result.failure_class.value if result.failure_class else "unclassified",
                result.error,
            )
        return result

    def _flush_pending_reports(self, summary: WorkerRunSummary) -> bool:
        """Retry unrecorded outcomes in order; False while any is still pending."""

        while self._pending_reports:
            pending = self._pending_reports[0]
            try:
                reported = self.repository.report_result(
                    item_id=pending.item_id,
                    result=pending.result,
                    worker_id=self.worker_id,
                )
            except LockTimeoutError as error:
                logger.warning(
                    "Worker %s still cannot report %s: %s",
                    self.worker_id,
                    pending.item_id,
                    error,
                )
                summary.lock_timeouts += 1
                return False
            self._pending_reports.pop(0)
            _count_outcome(summary, reported)
        return True

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Worker %s received %s; stopping after current item", self.worker_id, name)
            self._stop_signal_name = name
            self._stop_requested = True

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)


def _count_outcome(summary: WorkerRunSummary, reported: WorkItem | None) -> None:
    if reported is None:
        return
    if reported.status == WorkItemStatus.COMPLETED:
        summary.succeeded += 1
    elif reported.status == WorkItemStatus.READY:
        summary.retried += 1
    elif reported.status == WorkItemStatus.FAILED:
        summary.failed += 1
