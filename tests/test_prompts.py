from __future__ import annotations

from pathlib import Path

import allure

from swarm_queue.orchestrator.models import WorkItem, WorkItemPriority, WorkItemStatus
from swarm_queue.orchestrator.prompts import SYSTEM_PROMPT, build_execution_request

pytestmark = [
    allure.epic("Work Queue"),
    allure.feature("Task Prompt"),
]


def _item(description: str) -> WorkItem:
    return WorkItem(
        id="t-9",
        title="Add retries",
        description=description,
        status=WorkItemStatus.IN_PROGRESS,
        priority=WorkItemPriority.CRITICAL,
    )


def test_request_lists_task_fields_in_order(tmp_path: Path) -> None:
    request = build_execution_request(
        _item("Wrap the HTTP client"),
        work_dir=tmp_path,
        timeout_ms=5_000,
    )

    [message] = request.messages
    assert message.role == "user"
    assert message.content.splitlines() == [
        "TASK: Add retries",
        "ID: t-9",
        "PRIORITY: critical",
        "",
        "DESCRIPTION:",
        "Wrap the HTTP client",
        "",
        f"WORKING DIRECTORY: {tmp_path}",
    ]
    assert request.system_prompt == SYSTEM_PROMPT
    assert request.timeout_ms == 5_000
    assert request.work_dir == tmp_path


def test_blank_description_falls_back_to_title(tmp_path: Path) -> None:
    request = build_execution_request(_item("   "), work_dir=tmp_path)

    assert "DESCRIPTION:\nAdd retries\n" in request.messages[0].content
