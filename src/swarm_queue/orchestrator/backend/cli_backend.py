"""Subprocess supervision shared by all CLI harnesses."""

from __future__ import annotations

import codecs
import logging
import os
import signal
import subprocess
import threading
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import IO

from swarm_queue.orchestrator.backend.base import (
    ExecutionRequest,
    ExecutionResult,
    OutputCallback,
    ProgressCallback,
)
from swarm_queue.orchestrator.backend.file_changes import (
    FileChangeVocabulary,
    parse_file_changes,
)
from swarm_queue.orchestrator.backend.progress import (
    DEFAULT_PHASE_MARKERS,
    PhaseMarker,
    ProgressTracker,
)
from swarm_queue.orchestrator.backend.usage import extract_token_usage
from swarm_queue.orchestrator.failure_classifier import (
    DEFAULT_STDERR_FAILURE_MARKERS,
    classify_failure,
    first_failure_marker,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30 * 60 * 1000
DEFAULT_KILL_GRACE_SECONDS = 5.0
DEFAULT_AVAILABILITY_TIMEOUT_SECONDS = 5.0
_READ_CHUNK_BYTES = 4096
_POSIX = os.name != "nt"


class CliHarnessBackend:
    """Spawns one harness process per attempt and supervises it to completion.

    Subclasses only describe the harness: binary, argument layout, injected
    environment and the output vocabulary used for progress, failure and file
    change inference.
    """

    name = "cli"
    default_executable = ""
    version_marker: str | None = None
    phase_markers: tuple[PhaseMarker, ...] = DEFAULT_PHASE_MARKERS
    stderr_failure_markers: tuple[str, ...] = DEFAULT_STDERR_FAILURE_MARKERS
    file_vocabulary = FileChangeVocabulary()

    def __init__(  # noqa: PLR0913
        self,
        *,
        executable: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        flags: tuple[str, ...] = (),
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        availability_timeout_seconds: float = DEFAULT_AVAILABILITY_TIMEOUT_SECONDS,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.executable = executable or self.default_executable
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.flags = flags
        self.default_timeout_ms = default_timeout_ms
        self.kill_grace_seconds = kill_grace_seconds
        self.availability_timeout_seconds = availability_timeout_seconds
        self._environ = environ

    def build_prompt(self, request: ExecutionRequest) -> str:
        history = "\n\n".join(f"{message.role}: {message.content}" for message in request.messages)
        return f"{request.system_prompt}\n\n{history}"

    def build_args(self, prompt: str) -> list[str]:
        """Arguments after the executable; the default passes the prompt alone."""

        return [*self.flags, prompt]

    def credential_env(self) -> dict[str, str]:
        """Variables filled in only when the caller environment lacks them."""

        return {}

    def override_env(self) -> dict[str, str]:
        """Variables that replace caller values, such as base-URL overrides."""

        return {}

    def build_command(self, request: ExecutionRequest) -> list[str]:
        return [self.executable, *self.build_args(self.build_prompt(request))]

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ if self._environ is None else self._environ)
        for key, value in self.credential_env().items():
            env.setdefault(key, value)
        env.update(self.override_env())
        return env

    def is_available(self) -> bool:
        """Probe ``<executable> --version`` within the availability timeout."""

        try:
            completed = subprocess.run(  # noqa: S603
                [self.executable, "--version"],
                check=False,
                capture_output=True,
                text=True,
                timeout=self.availability_timeout_seconds,
                env=self.build_env(),
            )
        except subprocess.TimeoutExpired:
            logger.info("Harness %s probe timed out", self.name)
            return False
        except (OSError, ValueError) as error:
            logger.info("Harness %s probe failed to start: %s", self.name, error)
            return False
        if completed.returncode != 0:
            return False
        if self.version_marker is None:
            return True
        return self.version_marker.lower() in completed.stdout.lower()

    def execute(
        self,
        request: ExecutionRequest,
        on_progress: ProgressCallback | None = None,
        on_output: OutputCallback | None = None,
    ) -> ExecutionResult:
        """Run one attempt; every failure is returned as an unsuccessful result."""

        started = time.monotonic()
        timeout_ms = request.timeout_ms or self.default_timeout_ms
        command = self.build_command(request)

        if not Path(request.work_dir).is_dir():
            return self._spawn_failure(
                started,
                f"Harness working directory does not exist: {request.work_dir}",
            )
        try:
            process = subprocess.Popen(  # noqa: S603
                command,
                cwd=str(request.work_dir),
                env=self.build_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except FileNotFoundError:
            return self._spawn_failure(started, f"Harness command not found: {self.executable}")
        except OSError as error:
            return self._spawn_failure(started, f"Harness failed to start: {error}")

        logger.debug("Started harness %s pid=%s in %s", self.name, process.pid, request.work_dir)
        tracker = ProgressTracker(self.phase_markers, on_progress)
        stdout_parts: list[str] = []
        stderr_parts: list[str] = []

        def _on_stdout(chunk: str) -> None:
            stdout_parts.append(chunk)
            if on_output is not None:
                _deliver(on_output, chunk)
            tracker.feed(chunk)

        readers = [
            _start_reader(process.stdout, _on_stdout, name=f"{self.name}-stdout"),
            _start_reader(process.stderr, stderr_parts.append, name=f"{self.name}-stderr"),
        ]

        timed_out = False
        try:
            returncode = process.wait(timeout=timeout_ms / 1000)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning(
                "Harness %s pid=%s exceeded %dms; terminating",
                self.name,
                process.pid,
                timeout_ms,
            )
            returncode = _terminate_process(process, grace_seconds=self.kill_grace_seconds)

        for reader in readers:
            reader.join(timeout=max(self.kill_grace_seconds, 1.0))

        stdout = "".join(stdout_parts)
        stderr = "".join(stderr_parts)
        duration_ms = int((time.monotonic() - started) * 1000)

        if timed_out:
            success = False
            error: str | None = f"Process timed out after {timeout_ms}ms"
        else:
            failure_marker = first_failure_marker(stderr, self.stderr_failure_markers)
            success = returncode == 0 and failure_marker is None
            error = None if success else (stderr.strip() or f"Process exited with code {returncode}")

        if success:
            tracker.complete()

        changes = parse_file_changes(stdout, self.file_vocabulary)
        result = ExecutionResult(
            success=success,
            output=stdout,
            duration_ms=duration_ms,
            files_created=changes.created,
            files_modified=changes.modified,
            files_deleted=changes.deleted,
            token_usage=extract_token_usage(f"{stdout}\n{stderr}"),
            error=error,
            exit_code=returncode,
        )
        if not success:
            result.failure_class = classify_failure(
                harness=self.name,
                exit_code=returncode,
                stdout=stdout,
                stderr=stderr,
                timed_out=timed_out,
            ).failure_class
        return result

    def _spawn_failure(self, started: float, message: str) -> ExecutionResult:
        logger.warning("Harness %s could not be started: %s", self.name, message)
        return ExecutionResult(
            success=False,
            output="",
            duration_ms=int((time.monotonic() - started) * 1000),
            error=message,
            failure_class=classify_failure(
                harness=self.name,
                exit_code=None,
                stdout="",
                stderr="",
                spawn_failed=True,
            ).failure_class,
        )


def _start_reader(
    stream: IO[bytes] | None,
    sink: Callable[[str], None],
    *,
    name: str,
) -> threading.Thread:
    thread = threading.Thread(target=_pump, args=(stream, sink), name=name, daemon=True)
    thread.start()
    return thread


def _pump(stream: IO[bytes] | None, sink: Callable[[str], None]) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    with stream:
        while True:
            data = stream.read1(_READ_CHUNK_BYTES)  # type: ignore[attr-defined]
            if not data:
                break
            _deliver(sink, decoder.decode(data))
        _deliver(sink, decoder.decode(b"", final=True))


def _deliver(sink: Callable[[str], None], chunk: str) -> None:
    if not chunk:
        return
    try:
        sink(chunk)
    except Exception:  # noqa: BLE001
        # Keep draining the pipe so the harness never blocks on a full buffer.
        logger.exception("Harness output callback failed")


def _terminate_process(process: subprocess.Popen[bytes], *, grace_seconds: float) -> int | None:
    """SIGTERM the harness process group, then SIGKILL once the grace period passes.

    The group is always killed at the end: grandchildren that outlive the harness
    would otherwise keep the output pipes open and keep working in the work dir.
    """

    _signal_group(process, kill=False)
    try:
        returncode: int | None = process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning("Harness pid=%s ignored SIGTERM; killing", process.pid)
        returncode = None
    _signal_group(process, kill=True)
    if returncode is None:
        returncode = process.wait()
    return returncode


def _signal_group(process: subprocess.Popen[bytes], *, kill: bool) -> None:
    try:
        if _POSIX:
            os.killpg(process.pid, signal.SIGKILL if kill else signal.SIGTERM)
        elif kill:
            process.kill()
        else:
            process.terminate()
    except ProcessLookupError:
        return
    except OSError as error:
        logger.debug("Could not signal harness pid=%s: %s", process.pid, error)
