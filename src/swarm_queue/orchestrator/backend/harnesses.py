"""Concrete harness variants and the settings-driven factory."""

from __future__ import annotations

import shlex
from typing import Any

from swarm_queue.orchestrator.backend.base import ExecutionRequest
from swarm_queue.orchestrator.backend.cli_backend import CliHarnessBackend
from swarm_queue.orchestrator.backend.progress import PhaseMarker
from swarm_queue.orchestrator.errors import HarnessConfigError


class ClaudeCodeHarness(CliHarnessBackend):
    """Claude Code CLI in non-interactive print mode."""

    name = "claude"
    default_executable = "claude"
    version_marker = "claude"

    def __init__(self, *, skip_permissions: bool = True, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.skip_permissions = skip_permissions

    def build_args(self, prompt: str) -> list[str]:
        args = ["--print"]
        if self.skip_permissions:
            args.append("--dangerously-skip-permissions")
        if self.model:
            args.extend(["--model", self.model])
        return [*args, *self.flags, prompt]

    def credential_env(self) -> dict[str, str]:
        return {"ANTHROPIC_API_KEY": self.api_key} if self.api_key else {}

    def override_env(self) -> dict[str, str]:
        return {"ANTHROPIC_BASE_URL": self.base_url} if self.base_url else {}


class CodexHarness(CliHarnessBackend):
    """OpenAI Codex CLI ``exec`` mode."""

    name = "codex"
    default_executable = "codex"
    stderr_failure_markers = ("error",)
    phase_markers = (
        PhaseMarker("analyzing", 20, "Analyzing codebase", ("Reading", "Searching", "exploring")),
        PhaseMarker("planning", 40, "Planning implementation", ("thinking", "Planning")),
        PhaseMarker("implementing", 60, "Implementing changes", ("apply_patch", "file update")),
        PhaseMarker("testing", 80, "Running tests", ("Running tests", "pytest", "npm test")),
    )

    def __init__(self, *, mode: str = "full-auto", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.mode = mode

    def build_prompt(self, request: ExecutionRequest) -> str:
        task = "\n".join(message.content for message in request.messages)
        return f"{request.system_prompt}\n\nTask:\n{task}"

    def build_args(self, prompt: str) -> list[str]:
        args = ["exec", f"--{self.mode}"]
        if self.model and self.model != "default":
            args.extend(["--model", self.model])
        return [*args, *self.flags, prompt]

    def credential_env(self) -> dict[str, str]:
        return {"OPENAI_API_KEY": self.api_key} if self.api_key else {}

    def override_env(self) -> dict[str, str]:
        return {"OPENAI_BASE_URL": self.base_url} if self.base_url else {}


class GeminiHarness(CliHarnessBackend):
    """Google Gemini CLI with auto-approved tool calls."""

    name = "gemini"
    default_executable = "gemini"
    stderr_failure_markers = ("error",)

    def __init__(self, *, sandbox: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.sandbox = sandbox

    def build_args(self, prompt: str) -> list[str]:
        args = ["--yolo"]
        if self.sandbox:
            args.append("--sandbox")
        if self.model:
            args.extend(["--model", self.model])
        return [*args, *self.flags, "--prompt", prompt]

    def credential_env(self) -> dict[str, str]:
        return {"GEMINI_API_KEY": self.api_key} if self.api_key else {}


class CommandHarness(CliHarnessBackend):
    """Arbitrary command; ``{prompt}`` in an argument is replaced, else the prompt is appended."""

    name = "command"

    def __init__(self, *, command: list[str], **kwargs: Any) -> None:
        if not command:
            raise HarnessConfigError("Command harness requires a non-empty command.")
        super().__init__(executable=command[0], **kwargs)
        self.command_args = command[1:]

    def build_args(self, prompt: str) -> list[str]:
        if any("{prompt}" in arg for arg in self.command_args):
            args = [arg.replace("{prompt}", prompt) for arg in self.command_args]
            return [*args, *self.flags]
        return [*self.command_args, *self.flags, prompt]


HARNESS_TYPES: dict[str, type[CliHarnessBackend]] = {
    ClaudeCodeHarness.name: ClaudeCodeHarness,
    CodexHarness.name: CodexHarness,
    GeminiHarness.name: GeminiHarness,
    CommandHarness.name: CommandHarness,
}
SUPPORTED_HARNESSES: tuple[str, ...] = tuple(HARNESS_TYPES)


def build_harness(  # noqa: PLR0913
    name: str,
    *,
    executable: str | None = None,
    command: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    base_url: str | None = None,
    flags: tuple[str, ...] = (),
    sandbox: bool = False,
    default_timeout_ms: int | None = None,
    kill_grace_seconds: float | None = None,
    availability_timeout_seconds: float | None = None,
) -> CliHarnessBackend:
    """Construct a harness by name from plain configuration values."""

    normalized = name.strip().lower()
    if normalized not in HARNESS_TYPES:
        raise HarnessConfigError(
            f"Unsupported harness {name!r}. Expected one of: {', '.join(SUPPORTED_HARNESSES)}.",
        )

    kwargs: dict[str, Any] = {
        "model": model,
        "api_key": api_key,
        "base_url": base_url,
        "flags": flags,
    }
    if default_timeout_ms is not None:
        kwargs["default_timeout_ms"] = default_timeout_ms
    if kill_grace_seconds is not None:
        kwargs["kill_grace_seconds"] = kill_grace_seconds
    if availability_timeout_seconds is not None:
        kwargs["availability_timeout_seconds"] = availability_timeout_seconds

    if normalized == ClaudeCodeHarness.name:
        return ClaudeCodeHarness(executable=executable, skip_permissions=not sandbox, **kwargs)
    if normalized == GeminiHarness.name:
        return GeminiHarness(executable=executable, sandbox=sandbox, **kwargs)
    if normalized == CommandHarness.name:
        if not command or not command.strip():
            raise HarnessConfigError("Command harness requires SWARM_QUEUE_HARNESS_COMMAND.")
        return CommandHarness(command=shlex.split(command), **kwargs)
    return HARNESS_TYPES[normalized](executable=executable, **kwargs)
