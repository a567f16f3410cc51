"""Controllers for queue, worker and smoke CLI commands."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from swarm_queue.config import Settings
from swarm_queue.orchestrator.backend.cli_backend import CliHarnessBackend
from swarm_queue.orchestrator.backend.harnesses import SUPPORTED_HARNESSES, build_harness
from swarm_queue.orchestrator.lock import read_lock_holder
from swarm_queue.orchestrator.models import (
    WorkItem,
    WorkItemCreate,
    WorkItemPriority,
    WorkItemStatus,
)
from swarm_queue.orchestrator.repository import WorkQueueRepository
from swarm_queue.orchestrator.scheduler import unmet_prerequisites
from swarm_queue.orchestrator.smoke import (
    DEFAULT_EXPECT_SUBSTRING,
    DEFAULT_SMOKE_PROMPT,
    run_smoke_checks,
)
from swarm_queue.orchestrator.worker import QueueWorker

CLI_WORKER_PREFIX = "cli"


@dataclass(slots=True)
class QueueAddCommand:
    """CLI input for enqueuing a work item."""

    store_path: Path | None
    title: str
    description: str
    item_id: str | None
    priority: str
    depends_on: tuple[str, ...]
    blocked_by: tuple[str, ...]
    max_retries: int | None


@dataclass(slots=True)
class QueueListCommand:
    """CLI input for work item listing."""

    store_path: Path | None
    status: str | None


@dataclass(slots=True)
class QueueItemCommand:
    """CLI input for single-item inspection and retry."""

    store_path: Path | None
    item_id: str


@dataclass(slots=True)
class QueueStatsCommand:
    store_path: Path | None


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    store_path: Path | None
    once: bool
    max_tasks: int | None
    max_idle_polls: int | None


@dataclass(slots=True)
class SmokeCommand:
    """CLI input for harness smoke checks."""

    harnesses: tuple[str, ...]
    run: bool
    prompt: str = DEFAULT_SMOKE_PROMPT
    expect_substring: str = DEFAULT_EXPECT_SUBSTRING
    timeout_seconds: int = 60


@dataclass(slots=True)
class SmokeResult:
    lines: list[str]
    success: bool


class OrchestratorCliController:
    """Coordinates queue, worker, and inspection CLI operations."""

    def add_item(self, command: QueueAddCommand) -> list[str]:
        settings = _settings(command.store_path)
        try:
            priority = WorkItemPriority(command.priority.lower())
        except ValueError as error:
            raise ValueError(f"Unsupported priority: {command.priority!r}") from error
        repository = _repository(settings, worker_id=_cli_worker_id())
        item = repository.enqueue(
            WorkItemCreate(
                title=command.title,
                description=command.description,
                item_id=command.item_id,
                priority=priority,
                dependencies=command.depends_on,
                blockers=command.blocked_by,
                max_retries=(
                    command.max_retries
                    if command.max_retries is not None
                    else settings.queue.default_max_retries
                ),
            ),
        )
        return [
            f"Work item enqueued: id={item.id} priority={item.priority.value} "
            f"status={item.status.value}",
            f"Store: {settings.queue.store_path}",
        ]

    def list_items(self, command: QueueListCommand) -> list[str]:
        settings = _settings(command.store_path)
        status_filter = _parse_status(command.status)
        items = _repository(settings, worker_id=_cli_worker_id()).list_items(status=status_filter)

        lines = [f"Work items: {len(items)}"]
        for item in items:
            lines.append(
                f"  {item.id} status={item.status.value} priority={item.priority.value} "
                f"retries={item.retry_count}/{item.max_retries} "
                f"worker={item.assigned_worker or '-'} title={item.title}",
            )
        return lines

    def inspect_item(self, command: QueueItemCommand) -> list[str]:
        settings = _settings(command.store_path)
        repository = _repository(settings, worker_id=_cli_worker_id())
        items = repository.list_items()
        by_id = {item.id: item for item in items}
        item = by_id.get(command.item_id)
        if item is None:
            return [f"Work item not found: {command.item_id}"]

        waiting_on = unmet_prerequisites(item, by_id)
        return [
            f"Work item: {item.id}",
            f"Title: {item.title}",
            f"Status: {item.status.value}",
            f"Priority: {item.priority.value}",
            f"Retries: {item.retry_count}/{item.max_retries}",
            f"Assigned worker: {item.assigned_worker or '-'}",
            f"Dependencies: {_join_ids(item.dependencies)}",
            f"Blockers: {_join_ids(item.blockers)}",
            f"Waiting on: {_join_ids(waiting_on)}",
            f"Created: {item.created_at or '-'}",
            f"Updated: {item.updated_at or '-'}",
            f"Completed: {item.completed_at or '-'}",
            f"Last error: {item.last_error or '-'}",
            *_describe_extra(item),
        ]

    def retry_item(self, command: QueueItemCommand) -> list[str]:
        settings = _settings(command.store_path)
        repository = _repository(settings, worker_id=_cli_worker_id())
        try:
            item = repository.requeue(item_id=command.item_id)
        except KeyError as error:
            raise ValueError(f"Work item not found: {command.item_id}") from error
        return [f"Work item re-queued: {item.id} (retries reset to 0/{item.max_retries})"]

    def stats(self, command: QueueStatsCommand) -> list[str]:
        """Show queue health: per-status counts and the current lock holder."""

        settings = _settings(command.store_path)
        repository = _repository(settings, worker_id=_cli_worker_id())
        counts = repository.status_counts()
        items = repository.list_items()
        holder = read_lock_holder(repository.lock.path)

        lines = [
            f"Store: {settings.queue.store_path}",
            f"Total: {sum(counts.values())}",
        ]
        lines.extend(f"  {status.value}: {counts[status]}" for status in WorkItemStatus)
        by_id = {item.id: item for item in items}
        waiting = [
            item
            for item in items
            if item.status == WorkItemStatus.READY and unmet_prerequisites(item, by_id)
        ]
        lines.append(f"Ready but waiting on prerequisites: {len(waiting)}")
        lines.append(
            f"Lock holder: {holder.worker} since {holder.timestamp}"
            if holder is not None
            else "Lock holder: -",
        )
        workers = sorted(
            {item.assigned_worker for item in items if item.assigned_worker is not None},
        )
        lines.append(f"Active workers: {', '.join(workers) if workers else '-'}")
        return lines

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = _settings(command.store_path)
        settings.validate()
        worker_id = settings.resolved_worker_id()
        worker = QueueWorker(
            repository=_repository(settings, worker_id=worker_id),
            harness=_build_harness(settings, settings.harness.name),
            worker_id=worker_id,
            work_dir=settings.worker.work_dir,
            poll_interval_seconds=settings.worker.poll_interval_seconds,
            task_timeout_ms=settings.worker.task_timeout_seconds * 1000,
        )
        summary = (
            worker.run_once()
            if command.once
            else worker.run_loop(
                max_tasks=command.max_tasks,
                max_idle_polls=command.max_idle_polls,
            )
        )

        lines = [
            f"Worker {worker_id} summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"retried={summary.retried} failed={summary.failed} "
            f"idle_polls={summary.idle_polls} lock_timeouts={summary.lock_timeouts}",
        ]
        pending = worker.pending_reports
        if pending:
            lines.append(
                "Unreported outcomes (items left in_progress): "
                + ", ".join(report.item_id for report in pending),
            )
        return lines

    def smoke(self, command: SmokeCommand) -> SmokeResult:
        settings = Settings.from_env()
        selected = command.harnesses or (settings.harness.name,)
        unsupported = sorted(set(selected) - set(SUPPORTED_HARNESSES))
        if unsupported:
            return SmokeResult(
                lines=["Harness smoke check:", f"Unsupported harness(es): {', '.join(unsupported)}"],
                success=False,
            )

        try:
            harnesses = [_build_harness(settings, name) for name in selected]
        except ValueError as error:
            return SmokeResult(lines=["Harness smoke check:", str(error)], success=False)

        results = run_smoke_checks(
            harnesses=harnesses,
            run_prompt=command.prompt if command.run else None,
            expect_substring=command.expect_substring,
            timeout_seconds=command.timeout_seconds,
        )
        lines = ["Harness smoke check:"]
        for result in results:
            if not result.available:
                state = "unavailable"
            elif result.skipped_run:
                state = "available"
            else:
                state = "ok" if result.run_ok else "run-failed"
            lines.append(f"  {result.harness} ({result.executable}): {state}")
            if result.error:
                lines.append(f"    error: {result.error}")
            if result.output_preview:
                lines.append(f"    output: {result.output_preview}")
        return SmokeResult(lines=lines, success=all(result.ok for result in results))


def _settings(store_path: Path | None) -> Settings:
    return Settings.from_env(store_path=store_path)


def _repository(settings: Settings, *, worker_id: str) -> WorkQueueRepository:
    return WorkQueueRepository(
        settings.queue.store_path,
        worker_id=worker_id,
        stale_seconds=settings.queue.lock_stale_seconds,
        retry_interval_seconds=settings.queue.lock_retry_interval_seconds,
        max_attempts=settings.queue.lock_max_attempts,
    )


def _build_harness(settings: Settings, name: str) -> CliHarnessBackend:
    harness = settings.harness
    return build_harness(
        name,
        executable=harness.executable if name == harness.name else None,
        command=harness.command,
        model=harness.model if name == harness.name else None,
        api_key=harness.api_key if name == harness.name else None,
        base_url=harness.base_url if name == harness.name else None,
        flags=harness.flags if name == harness.name else (),
        sandbox=harness.sandbox,
        default_timeout_ms=settings.worker.task_timeout_seconds * 1000,
        kill_grace_seconds=harness.kill_grace_seconds,
        availability_timeout_seconds=harness.availability_timeout_seconds,
    )


def _cli_worker_id() -> str:
    return f"{CLI_WORKER_PREFIX}-{os.getpid()}"


def _parse_status(value: str | None) -> WorkItemStatus | None:
    if value is None:
        return None
    try:
        return WorkItemStatus(value.lower())
    except ValueError as error:
        raise ValueError(f"Unsupported status filter: {value!r}") from error


def _join_ids(ids: list[str]) -> str:
    return ", ".join(ids) if ids else "-"


def _describe_extra(item: WorkItem) -> list[str]:
    if not item.extra:
        return []
    return [f"Extra fields: {', '.join(sorted(item.extra))}"]
