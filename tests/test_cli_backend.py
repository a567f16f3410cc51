from __future__ import annotations

import os
import signal
import time
from pathlib import Path

import allure
import pytest

from swarm_queue.orchestrator.backend.base import ExecutionRequest, Message, TokenUsage
from swarm_queue.orchestrator.backend.harnesses import CommandHarness
from swarm_queue.orchestrator.models import FailureClass

pytestmark = [
    allure.epic("Harness Runtime"),
    allure.feature("Process Supervision"),
]


def _request(work_dir: Path, *, timeout_ms: int | None = None) -> ExecutionRequest:
    return ExecutionRequest(
        system_prompt="You are a test agent.",
        messages=[Message(role="user", content="TASK: write a file")],
        work_dir=work_dir,
        timeout_ms=timeout_ms,
    )


def test_successful_run_reports_output_files_tokens_and_progress(
    tmp_path: Path,
    echo_harness,
) -> None:
    harness = echo_harness("--write-file", "notes.txt", "--tokens", "1200", "345")
    events = []
    chunks: list[str] = []

    result = harness.execute(_request(tmp_path), on_progress=events.append, on_output=chunks.append)

    assert result.success is True
    assert result.error is None
    assert result.exit_code == 0
    assert result.failure_class is None
    assert "Reading task description" in result.output
    assert "".join(chunks) == result.output
    assert result.files_created == ["notes.txt"]
    assert result.files_modified == []
    assert result.token_usage == TokenUsage(input_tokens=1200, output_tokens=345)
    assert result.duration_ms >= 0
    # The prompt carries the system directive and the role-tagged history.
    written = (tmp_path / "notes.txt").read_text("utf-8")
    assert written == "You are a test agent.\n\nuser: TASK: write a file"

    percents = [event.percent_complete for event in events]
    assert percents == sorted(percents)
    assert len(set(percents)) == len(percents)
    assert percents[-1] == 100
    assert events[-1].phase == "complete"


def test_nonzero_exit_is_failure_with_stderr_error(tmp_path: Path, echo_harness) -> None:
    harness = echo_harness("--exit-code", "3", "--stderr", "Invalid model requested")
    events = []

    result = harness.execute(_request(tmp_path), on_progress=events.append)

    assert result.success is False
    assert result.exit_code == 3
    assert result.error == "Invalid model requested"
    assert result.failure_class == FailureClass.MODEL_NOT_AVAILABLE
    assert all(event.percent_complete < 100 for event in events)


def test_nonzero_exit_without_stderr_mentions_exit_code(tmp_path: Path, echo_harness) -> None:
    result = echo_harness("--exit-code", "2").execute(_request(tmp_path))

    assert result.success is False
    assert result.error == "Process exited with code 2"
    assert result.failure_class == FailureClass.HARNESS_ERROR


def test_failure_vocabulary_on_stderr_fails_zero_exit(tmp_path: Path, echo_harness) -> None:
    result = echo_harness("--stderr", "Lint step failed").execute(_request(tmp_path))

    assert result.exit_code == 0
    assert result.success is False
    assert result.error == "Lint step failed"


def test_benign_stderr_does_not_fail_run(tmp_path: Path, echo_harness) -> None:
    result = echo_harness("--stderr", "note: using cached index").execute(_request(tmp_path))

    assert result.success is True


def test_missing_binary_is_spawn_failure(tmp_path: Path) -> None:
    harness = CommandHarness(command=[str(tmp_path / "no-such-harness")])

    result = harness.execute(_request(tmp_path))

    assert result.success is False
    assert result.error == f"Harness command not found: {tmp_path / 'no-such-harness'}"
    assert result.failure_class == FailureClass.SPAWN_FAILURE
    assert result.exit_code is None


def test_missing_work_dir_is_spawn_failure(tmp_path: Path, echo_harness) -> None:
    result = echo_harness().execute(_request(tmp_path / "gone"))

    assert result.success is False
    assert "working directory does not exist" in (result.error or "")
    assert result.failure_class == FailureClass.SPAWN_FAILURE


def test_timeout_escalates_to_kill_within_grace(tmp_path: Path, echo_harness) -> None:
    timeout_ms = 500
    grace_seconds = 0.5
    harness = echo_harness(
        "--sleep-seconds",
        "30",
        "--ignore-sigterm",
        kill_grace_seconds=grace_seconds,
    )

    result = harness.execute(_request(tmp_path, timeout_ms=timeout_ms))

    assert result.success is False
    assert result.error == f"Process timed out after {timeout_ms}ms"
    assert result.failure_class == FailureClass.TIMEOUT_KILL
    assert result.exit_code in {-signal.SIGKILL, -signal.SIGTERM}
    assert result.duration_ms < timeout_ms + grace_seconds * 1000 + 5_000


def test_default_timeout_applies_without_request_timeout(tmp_path: Path, echo_harness) -> None:
    harness = echo_harness("--sleep-seconds", "30", default_timeout_ms=300, kill_grace_seconds=0.2)

    result = harness.execute(_request(tmp_path))

    assert result.failure_class == FailureClass.TIMEOUT_KILL
    assert result.error == "Process timed out after 300ms"


def test_failing_output_callback_does_not_break_supervision(tmp_path: Path, echo_harness) -> None:
    def _explode(_: str) -> None:
        raise RuntimeError("listener bug")

    result = echo_harness().execute(_request(tmp_path), on_output=_explode)

    assert result.success is True
    assert "Testing changes" in result.output


def test_is_available_probes_version(tmp_path: Path, echo_harness) -> None:
    assert echo_harness().is_available() is True
    assert CommandHarness(command=[str(tmp_path / "absent")]).is_available() is False


def test_failing_progress_callback_does_not_escape(tmp_path: Path, echo_harness) -> None:
    seen: list[int] = []

    def _explode(event) -> None:
        seen.append(event.percent_complete)
        raise RuntimeError(f"listener bug at {event.percent_complete}")

    result = echo_harness().execute(_request(tmp_path), on_progress=_explode)

    assert result.success is True
    assert seen[-1] == 100


@pytest.mark.skipif(os.name == "nt", reason="process groups are POSIX-only")
def test_timeout_kills_grandchildren_holding_the_pipes(tmp_path: Path) -> None:
    timeout_ms = 500
    grace_seconds = 2.0
    # The subshell outlives its parent shell unless the whole group is killed.
    harness = CommandHarness(
        command=["sh", "-c", "(sleep 1; touch survived; sleep 30) & wait", "sh"],
        kill_grace_seconds=grace_seconds,
    )

    result = harness.execute(_request(tmp_path, timeout_ms=timeout_ms))

    assert result.failure_class == FailureClass.TIMEOUT_KILL
    assert result.duration_ms < timeout_ms + grace_seconds * 1000 + 1_000
    time.sleep(1.5)
    assert not (tmp_path / "survived").exists()
