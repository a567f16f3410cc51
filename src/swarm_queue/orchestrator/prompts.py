"""Prompt templates turning a claimed work item into a harness request."""

from __future__ import annotations

from pathlib import Path

from swarm_queue.orchestrator.backend.base import ExecutionRequest, Message
from swarm_queue.orchestrator.models import WorkItem

SYSTEM_PROMPT = """\
You are an autonomous coding agent working inside an existing repository.

INSTRUCTIONS:
1. Read existing code to understand patterns and conventions.
2. Implement the task according to the description.
3. Follow the conventions already present in the codebase.
4. Do NOT commit changes; just write the code.

When done, summarize what you implemented and list the files you created,
modified or deleted, quoting each path.
"""

TASK_TEMPLATE = """\
TASK: {title}
ID: {item_id}
PRIORITY: {priority}

DESCRIPTION:
{description}

WORKING DIRECTORY: {work_dir}
"""


def render_task_message(item: WorkItem, *, work_dir: Path) -> str:
    description = item.description.strip() or item.title
    return TASK_TEMPLATE.format(
        title=item.title,
        item_id=item.id,
        priority=item.priority.value,
        description=description,
        work_dir=work_dir,
    )


def build_execution_request(
    item: WorkItem,
    *,
    work_dir: Path,
    timeout_ms: int | None = None,
    system_prompt: str = SYSTEM_PROMPT,
) -> ExecutionRequest:
    """Build the single-turn request sent to the harness for ``item``."""

    return ExecutionRequest(
        system_prompt=system_prompt,
        messages=[Message(role="user", content=render_task_message(item, work_dir=work_dir))],
        work_dir=work_dir,
        timeout_ms=timeout_ms,
    )
