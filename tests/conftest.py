"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from swarm_queue.orchestrator.backend.harnesses import CommandHarness
from swarm_queue.orchestrator.repository import WorkQueueRepository

ECHO_AGENT_COMMAND: tuple[str, ...] = (
    sys.executable,
    "-m",
    "swarm_queue.orchestrator.backend.echo_agent",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    """Keep developer SWARM_QUEUE_* settings out of tests."""

    for name in list(os.environ):
        if name.startswith("SWARM_QUEUE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def store_path(tmp_path: Path) -> Path:
    return tmp_path / ".beads" / "tasks.jsonl"


@pytest.fixture()
def make_repository(store_path: Path) -> Callable[..., WorkQueueRepository]:
    def _make(worker_id: str = "worker-a", **kwargs) -> WorkQueueRepository:
        kwargs.setdefault("retry_interval_seconds", 0.01)
        return WorkQueueRepository(store_path, worker_id=worker_id, **kwargs)

    return _make


@pytest.fixture()
def echo_harness() -> Callable[..., CommandHarness]:
    """Build a command harness running the bundled echo agent with extra flags."""

    def _make(*agent_args: str, **kwargs) -> CommandHarness:
        return CommandHarness(command=[*ECHO_AGENT_COMMAND, *agent_args], **kwargs)

    return _make


@pytest.fixture()
def echo_command_env() -> str:
    """``SWARM_QUEUE_HARNESS_COMMAND`` value running the echo agent."""

    return shlex.join(ECHO_AGENT_COMMAND)
