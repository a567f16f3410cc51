"""Runtime configuration for queue workers and harnesses."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from uuid import uuid4

from swarm_queue.orchestrator.backend.harnesses import SUPPORTED_HARNESSES

DEFAULT_STORE_PATH = Path(".beads/tasks.jsonl")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class QueueSettings:
    """Shared store and claim-lock settings."""

    store_path: Path = DEFAULT_STORE_PATH
    lock_stale_seconds: float = 5.0
    lock_retry_interval_seconds: float = 0.5
    lock_max_attempts: int = 10
    default_max_retries: int = 2


@dataclass(slots=True)
class WorkerSettings:
    """Worker loop settings."""

    worker_id: str | None = None
    poll_interval_seconds: float = 10.0
    task_timeout_seconds: int = 1_800
    work_dir: Path = Path()


@dataclass(slots=True)
class HarnessSettings:
    """Which external harness to run and how to invoke it."""

    name: str = "claude"
    executable: str | None = None
    model: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    flags: tuple[str, ...] = ()
    command: str | None = None
    sandbox: bool = False
    kill_grace_seconds: float = 5.0
    availability_timeout_seconds: float = 5.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    harness: HarnessSettings = field(default_factory=HarnessSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, store_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            queue=QueueSettings(
                store_path=store_path
                or Path(os.getenv("SWARM_QUEUE_STORE_PATH", str(DEFAULT_STORE_PATH))),
                lock_stale_seconds=float(os.getenv("SWARM_QUEUE_LOCK_STALE_SECONDS", "5.0")),
                lock_retry_interval_seconds=float(
                    os.getenv("SWARM_QUEUE_LOCK_RETRY_INTERVAL_SECONDS", "0.5"),
                ),
                lock_max_attempts=int(os.getenv("SWARM_QUEUE_LOCK_MAX_ATTEMPTS", "10")),
                default_max_retries=int(os.getenv("SWARM_QUEUE_DEFAULT_MAX_RETRIES", "2")),
            ),
            worker=WorkerSettings(
                worker_id=_env_str("SWARM_QUEUE_WORKER_ID"),
                poll_interval_seconds=float(
                    os.getenv("SWARM_QUEUE_POLL_INTERVAL_SECONDS", "10.0"),
                ),
                task_timeout_seconds=int(os.getenv("SWARM_QUEUE_TASK_TIMEOUT_SECONDS", "1800")),
                work_dir=Path(os.getenv("SWARM_QUEUE_WORK_DIR", ".")),
            ),
            harness=HarnessSettings(
                name=os.getenv("SWARM_QUEUE_HARNESS", "claude").strip().lower(),
                executable=_env_str("SWARM_QUEUE_HARNESS_EXECUTABLE"),
                model=_env_str("SWARM_QUEUE_HARNESS_MODEL"),
                api_key=_env_str("SWARM_QUEUE_HARNESS_API_KEY"),
                base_url=_env_str("SWARM_QUEUE_HARNESS_BASE_URL"),
                flags=tuple(shlex.split(os.getenv("SWARM_QUEUE_HARNESS_FLAGS", ""))),
                command=_env_str("SWARM_QUEUE_HARNESS_COMMAND"),
                sandbox=_env_bool("SWARM_QUEUE_HARNESS_SANDBOX", default=False),
                kill_grace_seconds=float(os.getenv("SWARM_QUEUE_KILL_GRACE_SECONDS", "5.0")),
                availability_timeout_seconds=float(
                    os.getenv("SWARM_QUEUE_AVAILABILITY_TIMEOUT_SECONDS", "5.0"),
                ),
            ),
            log_level=os.getenv("SWARM_QUEUE_LOG_LEVEL", "INFO").strip().upper(),
        )

    def resolved_worker_id(self) -> str:
        """Configured worker identity, or a fresh harness-prefixed one."""

        if self.worker.worker_id:
            return self.worker.worker_id
        return f"{self.harness.name}-{uuid4().hex[:8]}"

    def validate(self) -> None:
        """Raise configuration error on values the queue cannot operate with."""

        if self.queue.lock_stale_seconds <= 0:
            raise ValueError("SWARM_QUEUE_LOCK_STALE_SECONDS must be > 0.")
        if self.queue.lock_retry_interval_seconds < 0:
            raise ValueError("SWARM_QUEUE_LOCK_RETRY_INTERVAL_SECONDS must be >= 0.")
        if self.queue.lock_max_attempts < 1:
            raise ValueError("SWARM_QUEUE_LOCK_MAX_ATTEMPTS must be >= 1.")
        if self.queue.default_max_retries < 1:
            raise ValueError("SWARM_QUEUE_DEFAULT_MAX_RETRIES must be >= 1.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("SWARM_QUEUE_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.task_timeout_seconds <= 0:
            raise ValueError("SWARM_QUEUE_TASK_TIMEOUT_SECONDS must be > 0.")
        if self.harness.kill_grace_seconds < 0:
            raise ValueError("SWARM_QUEUE_KILL_GRACE_SECONDS must be >= 0.")
        if self.harness.availability_timeout_seconds <= 0:
            raise ValueError("SWARM_QUEUE_AVAILABILITY_TIMEOUT_SECONDS must be > 0.")
        if self.harness.name not in SUPPORTED_HARNESSES:
            raise ValueError(
                f"SWARM_QUEUE_HARNESS must be one of {', '.join(SUPPORTED_HARNESSES)}; "
                f"got {self.harness.name!r}.",
            )
        if self.harness.name == "command" and not (self.harness.command or "").strip():
            raise ValueError(
                "SWARM_QUEUE_HARNESS_COMMAND is required when SWARM_QUEUE_HARNESS=command.",
            )
        if self.log_level not in LOG_LEVELS:
            raise ValueError(
                f"SWARM_QUEUE_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}; "
                f"got {self.log_level!r}.",
            )


def _env_str(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
