"""Lightweight smoke checks for external CLI harnesses."""

from __future__ import annotations

import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from tempfile import TemporaryDirectory

from swarm_queue.orchestrator.backend.base import ExecutionRequest, Message
from swarm_queue.orchestrator.backend.cli_backend import CliHarnessBackend

SMOKE_SYSTEM_PROMPT = "You are a connectivity check. Do not modify any files."
DEFAULT_SMOKE_PROMPT = "Reply with the single word SMOKE_OK."
DEFAULT_EXPECT_SUBSTRING = "SMOKE_OK"


@dataclass(slots=True)
class HarnessSmokeResult:
    """One harness smoke-check result."""

    harness: str
    executable: str
    available: bool
    run_ok: bool
    skipped_run: bool
    error: str | None
    output_preview: str

    @property
    def ok(self) -> bool:
        return self.available and (self.skipped_run or self.run_ok)


def run_smoke_checks(
    *,
    harnesses: Sequence[CliHarnessBackend],
    run_prompt: str | None = None,
    expect_substring: str = DEFAULT_EXPECT_SUBSTRING,
    timeout_seconds: int = 60,
) -> list[HarnessSmokeResult]:
    """Probe each harness and optionally run one synthetic prompt through it."""

    results: list[HarnessSmokeResult] = []
    for harness in harnesses:
        if not harness.is_available():
            resolved = shutil.which(harness.executable)
            error = (
                f"Executable not found in PATH: {harness.executable}"
                if resolved is None
                else f"Version probe failed (resolved executable: {resolved})"
            )
            results.append(
                HarnessSmokeResult(
                    harness=harness.name,
                    executable=harness.executable,
                    available=False,
                    run_ok=False,
                    skipped_run=True,
                    error=error,
                    output_preview="",
                ),
            )
            continue

        if run_prompt is None:
            results.append(
                HarnessSmokeResult(
                    harness=harness.name,
                    executable=harness.executable,
                    available=True,
                    run_ok=False,
                    skipped_run=True,
                    error=None,
                    output_preview="",
                ),
            )
            continue

        results.append(
            _run_synthetic_task(
                harness=harness,
                prompt=run_prompt,
                expect_substring=expect_substring,
                timeout_seconds=timeout_seconds,
            ),
        )
    return results


def _run_synthetic_task(
    *,
    harness: CliHarnessBackend,
    prompt: str,
    expect_substring: str,
    timeout_seconds: int,
) -> HarnessSmokeResult:
    with TemporaryDirectory(prefix="swarm-queue-smoke-") as temp_dir:
        result = harness.execute(
            ExecutionRequest(
                system_prompt=SMOKE_SYSTEM_PROMPT,
                messages=[Message(role="user", content=prompt)],
                work_dir=Path(temp_dir),
                timeout_ms=timeout_seconds * 1000,
            ),
        )

    error: str | None = None
    if not result.success:
        error = result.error or "Synthetic task failed."
    elif expect_substring not in result.output:
        error = f"Synthetic output missing expected substring: {expect_substring!r}"
    return HarnessSmokeResult(
        harness=harness.name,
        executable=harness.executable,
        available=True,
        run_ok=error is None,
        skipped_run=False,
        error=error,
        output_preview=_truncate(result.output),
    )


def _truncate(value: str, *, limit: int = 240) -> str:
    compact = value.strip().replace("\n", " ")
    if len(compact) <= limit:
        return compact
    return compact[:limit] + "..."
