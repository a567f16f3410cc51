"""Harness backend implementations."""

from swarm_queue.orchestrator.backend.base import (
    ExecutionRequest,
    ExecutionResult,
    HarnessBackend,
    Message,
    ProgressEvent,
    TokenUsage,
)
from swarm_queue.orchestrator.backend.cli_backend import CliHarnessBackend
from swarm_queue.orchestrator.backend.harnesses import (
    SUPPORTED_HARNESSES,
    ClaudeCodeHarness,
    CodexHarness,
    CommandHarness,
    GeminiHarness,
    build_harness,
)

__all__ = [
    "SUPPORTED_HARNESSES",
    "ClaudeCodeHarness",
    "CliHarnessBackend",
    "CodexHarness",
    "CommandHarness",
    "ExecutionRequest",
    "ExecutionResult",
    "GeminiHarness",
    "HarnessBackend",
    "Message",
    "ProgressEvent",
    "TokenUsage",
    "build_harness",
]
