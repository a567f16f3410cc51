"""Harness interface for work item execution."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from swarm_queue.orchestrator.models import FailureClass


@dataclass(slots=True)
class Message:
    """One role/content entry of the task conversation."""

    role: str
    content: str


@dataclass(slots=True)
class ExecutionRequest:
    """Inputs required to execute one attempt."""

    system_prompt: str
    messages: list[Message]
    work_dir: Path
    timeout_ms: int | None = None


@dataclass(slots=True)
class TokenUsage:
    input_tokens: int
    output_tokens: int


@dataclass(slots=True)
class ExecutionResult:
    """Structured outcome of one attempt; failures are reported, never raised."""

    success: bool
    output: str
    duration_ms: int
    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    files_deleted: list[str] = field(default_factory=list)
    token_usage: TokenUsage | None = None
    error: str | None = None
    exit_code: int | None = None
    failure_class: FailureClass | None = None


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    """Advisory progress estimate inferred from harness output."""

    phase: str
    percent_complete: int
    description: str


ProgressCallback = Callable[[ProgressEvent], None]
OutputCallback = Callable[[str], None]


class HarnessBackend(Protocol):
    """Protocol implemented by harness runners."""

    name: str

    def is_available(self) -> bool:
        """Probe the harness binary; never raises."""

    def execute(
        self,
        request: ExecutionRequest,
        on_progress: ProgressCallback | None = None,
        on_output: OutputCallback | None = None,
    ) -> ExecutionResult:
        """Run one attempt and return its structured result."""
