from __future__ import annotations

import json
import time
from pathlib import Path

import allure

from swarm_queue.orchestrator.backend.base import (
    ExecutionRequest,
    ExecutionResult,
    ProgressEvent,
)
from swarm_queue.orchestrator.lock import LockToken
from swarm_queue.orchestrator.models import WorkItemCreate, WorkItemPriority, WorkItemStatus
from swarm_queue.orchestrator.worker import QueueWorker

pytestmark = [
    allure.epic("Work Queue"),
    allure.feature("Worker Loop"),
]


class _ScriptedHarness:
    """Returns queued results and records the requests it received."""

    name = "scripted"

    def __init__(self, *results: ExecutionResult, before_return=None) -> None:
        self.results = list(results)
        self.requests: list[ExecutionRequest] = []
        self.before_return = before_return

    def is_available(self) -> bool:
        return True

    def execute(self, request, on_progress=None, on_output=None) -> ExecutionResult:
        self.requests.append(request)
        if on_output is not None:
            on_output("Reading task\n")
        if on_progress is not None:
            on_progress(ProgressEvent(phase="analyzing", percent_complete=20, description="x"))
        if self.before_return is not None:
            self.before_return()
        return self.results.pop(0)


def _ok() -> ExecutionResult:
    return ExecutionResult(success=True, output="done", duration_ms=1)


def _failed() -> ExecutionResult:
    return ExecutionResult(success=False, output="", duration_ms=1, error="exit 1", exit_code=1)


def _records(store_path: Path) -> dict[str, dict]:
    records = [json.loads(line) for line in store_path.read_text("utf-8").splitlines()]
    return {record["id"]: record for record in records}


def _worker(repository, harness, tmp_path: Path, **kwargs) -> QueueWorker:
    return QueueWorker(
        repository=repository,
        harness=harness,
        worker_id=repository.worker_id,
        work_dir=tmp_path,
        poll_interval_seconds=0.0,
        **kwargs,
    )


def test_high_priority_item_completes_with_echo_harness(
    tmp_path: Path,
    make_repository,
    store_path,
    echo_harness,
) -> None:
    repository = make_repository("claude-1")
    repository.enqueue(WorkItemCreate(title="Later", item_id="t-low", priority=WorkItemPriority.LOW))
    repository.enqueue(
        WorkItemCreate(
            title="Add health endpoint",
            description="Expose GET /health",
            item_id="t-high",
            priority=WorkItemPriority.HIGH,
        ),
    )
    worker = _worker(repository, echo_harness("--write-file", "health.txt"), tmp_path)

    summary = worker.run_once()

    assert summary.processed == 1
    assert summary.succeeded == 1
    records = _records(store_path)
    assert records["t-high"]["status"] == "completed"
    assert records["t-high"]["retryCount"] == 0
    assert "completedAt" in records["t-high"]
    assert "assignedWorker" not in records["t-high"]
    assert records["t-low"]["status"] == "ready"
    prompt = (tmp_path / "health.txt").read_text("utf-8")
    assert "TASK: Add health endpoint" in prompt
    assert "ID: t-high" in prompt
    assert "PRIORITY: high" in prompt
    assert "Expose GET /health" in prompt


def test_dependency_runs_before_dependent(tmp_path: Path, make_repository) -> None:
    repository = make_repository()
    repository.enqueue(
        WorkItemCreate(
            title="X",
            item_id="x",
            priority=WorkItemPriority.CRITICAL,
            dependencies=("y",),
        ),
    )
    repository.enqueue(WorkItemCreate(title="Y", item_id="y", priority=WorkItemPriority.LOW))
    harness = _ScriptedHarness(_ok(), _ok())
    worker = _worker(repository, harness, tmp_path)

    summary = worker.run_loop(max_idle_polls=1)

    assert summary.processed == 2
    assert summary.succeeded == 2
    assert summary.idle_polls == 1
    task_lines = [request.messages[0].content.splitlines()[0] for request in harness.requests]
    assert task_lines == ["TASK: Y", "TASK: X"]


def test_failures_retry_then_fail_permanently(tmp_path: Path, make_repository, echo_harness) -> None:
    repository = make_repository()
    repository.enqueue(WorkItemCreate(title="Broken", item_id="b", max_retries=2))
    worker = _worker(repository, echo_harness("--exit-code", "1"), tmp_path)

    first = worker.run_once()
    second = worker.run_once()
    third = worker.run_once()

    assert (first.retried, first.failed) == (1, 0)
    assert (second.retried, second.failed) == (0, 1)
    assert third.idle_polls == 1
    item = repository.get_item("b")
    assert item is not None
    assert item.status == WorkItemStatus.FAILED
    assert item.retry_count == 2
    assert item.last_error == "[harness_error] Process exited with code 1"


def test_transient_failure_recovers_on_retry(tmp_path: Path, make_repository, echo_harness) -> None:
    repository = make_repository()
    repository.enqueue(WorkItemCreate(title="Flaky", item_id="f", max_retries=2))
    state_file = tmp_path / "runs.txt"
    harness = echo_harness("--fail-times", "1", "--state-file", str(state_file))
    worker = _worker(repository, harness, tmp_path)

    summary = worker.run_loop(max_idle_polls=1)

    assert summary.processed == 2
    assert summary.retried == 1
    assert summary.succeeded == 1
    item = repository.get_item("f")
    assert item is not None
    assert item.status == WorkItemStatus.COMPLETED
    assert item.retry_count == 1
    assert state_file.read_text("utf-8") == "2"


def test_report_lock_timeout_is_retried_before_next_claim(
    tmp_path: Path,
    make_repository,
) -> None:
    repository = make_repository("worker-a", max_attempts=2, stale_seconds=3_600.0)
    repository.enqueue(WorkItemCreate(title="First", item_id="first"))
    repository.enqueue(WorkItemCreate(title="Second", item_id="second"))
    lock_path = repository.lock.path

    def _foreign_lock() -> None:
        token = LockToken(worker="worker-b", timestamp=int(time.time() * 1000))
        lock_path.write_text(token.to_json(), "utf-8")

    harness = _ScriptedHarness(_ok(), _ok(), before_return=_foreign_lock)
    worker = _worker(repository, harness, tmp_path)

    blocked = worker.run_once()

    assert blocked.processed == 1
    assert blocked.lock_timeouts == 1
    assert [pending.item_id for pending in worker.pending_reports] == ["first"]
    first = repository.get_item("first")
    assert first is not None
    assert first.status == WorkItemStatus.IN_PROGRESS

    # Still locked: the outcome stays pending and nothing new is claimed.
    stalled = worker.run_once()
    assert stalled.processed == 0
    assert stalled.lock_timeouts == 1
    assert len(harness.requests) == 1

    lock_path.unlink()
    harness.before_return = None
    recovered = worker.run_once()

    assert recovered.succeeded == 2
    assert recovered.processed == 1
    assert worker.pending_reports == []
    assert [item.status for item in repository.list_items()] == [
        WorkItemStatus.COMPLETED,
        WorkItemStatus.COMPLETED,
    ]


def test_run_loop_respects_max_tasks(tmp_path: Path, make_repository) -> None:
    repository = make_repository()
    for item_id in ("a", "b", "c"):
        repository.enqueue(WorkItemCreate(title=item_id, item_id=item_id))
    worker = _worker(repository, _ScriptedHarness(_ok(), _ok(), _ok()), tmp_path)

    summary = worker.run_loop(max_tasks=2)

    assert summary.processed == 2
    assert repository.status_counts()[WorkItemStatus.READY] == 1


def test_stop_request_prevents_new_claims(tmp_path: Path, make_repository) -> None:
    repository = make_repository()
    repository.enqueue(WorkItemCreate(title="a", item_id="a"))
    harness = _ScriptedHarness(_ok())
    worker = _worker(repository, harness, tmp_path)
    worker.request_stop()

    summary = worker.run_loop()

    assert summary.processed == 0
    assert harness.requests == []


def test_request_carries_timeout_and_work_dir(tmp_path: Path, make_repository) -> None:
    repository = make_repository()
    repository.enqueue(WorkItemCreate(title="a", item_id="a"))
    harness = _ScriptedHarness(_failed())
    worker = _worker(repository, harness, tmp_path, task_timeout_ms=90_000)

    worker.run_once()

    [request] = harness.requests
    assert request.timeout_ms == 90_000
    assert request.work_dir == tmp_path
    assert "Do NOT commit changes" in request.system_prompt


def test_raising_harness_takes_the_retry_path(tmp_path: Path, make_repository) -> None:
    class _BrokenHarness(_ScriptedHarness):
        def execute(self, request, on_progress=None, on_output=None) -> ExecutionResult:
            self.requests.append(request)
            raise RuntimeError("adapter crashed")

    repository = make_repository()
    repository.enqueue(WorkItemCreate(title="a", item_id="a", max_retries=2))
    harness = _BrokenHarness()
    worker = _worker(repository, harness, tmp_path)

    summary = worker.run_loop(max_idle_polls=1)

    assert (summary.processed, summary.retried, summary.failed) == (2, 1, 1)
    assert len(harness.requests) == 2
    item = repository.get_item("a")
    assert item is not None
    assert item.status == WorkItemStatus.FAILED
    assert item.assigned_worker is None
    assert item.last_error == "[harness_error] Harness raised RuntimeError: adapter crashed"
