"""CLI entrypoint for swarm-queue."""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from swarm_queue import __version__
from swarm_queue.config import LOG_LEVELS
from swarm_queue.orchestrator.backend.harnesses import SUPPORTED_HARNESSES
from swarm_queue.orchestrator.controllers import (
    OrchestratorCliController,
    QueueAddCommand,
    QueueItemCommand,
    QueueListCommand,
    QueueStatsCommand,
    SmokeCommand,
    WorkerCommand,
)
from swarm_queue.orchestrator.errors import LockTimeoutError
from swarm_queue.orchestrator.models import WorkItemPriority, WorkItemStatus
from swarm_queue.orchestrator.smoke import DEFAULT_EXPECT_SUBSTRING, DEFAULT_SMOKE_PROMPT

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

T = TypeVar("T")


@click.group()
@click.version_option(version=__version__, prog_name="swarm-queue")
@click.option(
    "--store-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Queue file path (default: `SWARM_QUEUE_STORE_PATH` or `.beads/tasks.jsonl`).",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level (default: `SWARM_QUEUE_LOG_LEVEL` or INFO).",
)
@click.pass_context
def swarm_queue(ctx: click.Context, store_path: Path | None, log_level: str | None) -> None:
    """Shared file-backed work queue drained by CLI coding-agent workers."""

    ctx.ensure_object(dict)
    ctx.obj["store_path"] = store_path
    level = (log_level or os.getenv("SWARM_QUEUE_LOG_LEVEL", "INFO")).strip().upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


@swarm_queue.group()
def queue() -> None:
    """Work item commands."""


@queue.command("add")
@click.option("--title", required=True, help="Short work item title.")
@click.option("--description", default="", help="Full task description passed to the harness.")
@click.option("--id", "item_id", default=None, help="Explicit item id (default: random UUID).")
@click.option(
    "--priority",
    type=click.Choice([priority.value for priority in WorkItemPriority], case_sensitive=False),
    default=WorkItemPriority.MEDIUM.value,
    show_default=True,
    help="Claim priority tier.",
)
@click.option(
    "--depends-on",
    "depends_on",
    multiple=True,
    help="Id that must be completed first. Can be repeated.",
)
@click.option(
    "--blocked-by",
    "blocked_by",
    multiple=True,
    help="Blocker id that must be completed first. Can be repeated.",
)
@click.option(
    "--max-retries",
    type=click.IntRange(min=1),
    default=None,
    help="Attempt ceiling (default: `SWARM_QUEUE_DEFAULT_MAX_RETRIES` or 2).",
)
@click.pass_context
def queue_add(  # noqa: PLR0913
    ctx: click.Context,
    title: str,
    description: str,
    item_id: str | None,
    priority: str,
    depends_on: tuple[str, ...],
    blocked_by: tuple[str, ...],
    max_retries: int | None,
) -> None:
    """Append a `ready` work item to the queue."""

    _emit_lines(
        _run(
            lambda: ORCHESTRATOR_CONTROLLER.add_item(
                QueueAddCommand(
                    store_path=ctx.obj["store_path"],
                    title=title,
                    description=description,
                    item_id=item_id,
                    priority=priority,
                    depends_on=depends_on,
                    blocked_by=blocked_by,
                    max_retries=max_retries,
                ),
            ),
        ),
    )


@queue.command("list")
@click.option(
    "--status",
    type=click.Choice([status.value for status in WorkItemStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.pass_context
def queue_list(ctx: click.Context, status: str | None) -> None:
    """List work items in stored order."""

    _emit_lines(
        _run(
            lambda: ORCHESTRATOR_CONTROLLER.list_items(
                QueueListCommand(store_path=ctx.obj["store_path"], status=status),
            ),
        ),
    )


@queue.command("inspect")
@click.option("--item-id", required=True, help="Work item id.")
@click.pass_context
def queue_inspect(ctx: click.Context, item_id: str) -> None:
    """Inspect one work item and its unmet prerequisites."""

    _emit_lines(
        _run(
            lambda: ORCHESTRATOR_CONTROLLER.inspect_item(
                QueueItemCommand(store_path=ctx.obj["store_path"], item_id=item_id),
            ),
        ),
    )


@queue.command("retry")
@click.option("--item-id", required=True, help="Work item id.")
@click.pass_context
def queue_retry(ctx: click.Context, item_id: str) -> None:
    """Manually re-queue a `failed` work item with a fresh retry budget."""

    _emit_lines(
        _run(
            lambda: ORCHESTRATOR_CONTROLLER.retry_item(
                QueueItemCommand(store_path=ctx.obj["store_path"], item_id=item_id),
            ),
        ),
    )


@queue.command("stats")
@click.pass_context
def queue_stats(ctx: click.Context) -> None:
    """Show per-status counts, the lock holder and active workers."""

    _emit_lines(
        _run(
            lambda: ORCHESTRATOR_CONTROLLER.stats(
                QueueStatsCommand(store_path=ctx.obj["store_path"]),
            ),
        ),
    )


@swarm_queue.command("worker")
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run one claim-execute cycle or keep polling.",
)
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed items in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after this many consecutive empty polls (default: poll forever).",
)
@click.pass_context
def worker(
    ctx: click.Context,
    once: bool,
    max_tasks: int | None,
    max_idle_polls: int | None,
) -> None:
    """Run a queue worker using the configured harness (`SWARM_QUEUE_HARNESS`)."""

    _emit_lines(
        _run(
            lambda: ORCHESTRATOR_CONTROLLER.run_worker(
                WorkerCommand(
                    store_path=ctx.obj["store_path"],
                    once=once,
                    max_tasks=max_tasks,
                    max_idle_polls=max_idle_polls,
                ),
            ),
        ),
    )


@swarm_queue.command("smoke")
@click.option(
    "--harness",
    "harnesses",
    type=click.Choice(SUPPORTED_HARNESSES, case_sensitive=False),
    multiple=True,
    help="Harness to check (default: configured one). Can be repeated.",
)
@click.option(
    "--run/--probe-only",
    default=False,
    show_default=True,
    help="Also run a synthetic prompt through each available harness.",
)
@click.option("--prompt", default=DEFAULT_SMOKE_PROMPT, show_default=True)
@click.option("--expect-substring", default=DEFAULT_EXPECT_SUBSTRING, show_default=True)
@click.option(
    "--timeout-seconds",
    type=click.IntRange(min=1),
    default=60,
    show_default=True,
)
def smoke(
    harnesses: tuple[str, ...],
    run: bool,
    prompt: str,
    expect_substring: str,
    timeout_seconds: int,
) -> None:
    """Check that harness executables are installed and respond."""

    result = _run(
        lambda: ORCHESTRATOR_CONTROLLER.smoke(
            SmokeCommand(
                harnesses=tuple(name.lower() for name in harnesses),
                run=run,
                prompt=prompt,
                expect_substring=expect_substring,
                timeout_seconds=timeout_seconds,
            ),
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Harness smoke check failed.")


def _run(call: Callable[[], T]) -> T:
    try:
        return call()
    except (ValueError, LockTimeoutError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    swarm_queue()
