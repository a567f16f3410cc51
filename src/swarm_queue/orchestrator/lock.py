"""Token-file mutual exclusion shared by queue workers.

A worker holds the queue while the token file carries its identity and
acquisition timestamp. Tokens older than the staleness threshold are presumed
abandoned by a crashed holder and are taken over.

There is no fencing token: a holder that stalls past the threshold and then
resumes can still write after a new holder has taken the token over.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from swarm_queue.orchestrator.errors import LockTimeoutError
from swarm_queue.orchestrator.store import write_text_atomic

logger = logging.getLogger(__name__)

DEFAULT_STALE_SECONDS = 5.0
DEFAULT_RETRY_INTERVAL_SECONDS = 0.5
DEFAULT_MAX_ATTEMPTS = 10


@dataclass(slots=True, frozen=True)
class LockToken:
    """Holder identity and acquisition time (epoch milliseconds)."""

    worker: str
    timestamp: int

    def to_json(self) -> str:
        return json.dumps({"worker": self.worker, "timestamp": self.timestamp})


class ClaimLock:
    """Time-bounded exclusive token guarding read-modify-write store cycles."""

    def __init__(  # noqa: PLR0913
        self,
        path: Path,
        *,
        worker_id: str,
        stale_seconds: float = DEFAULT_STALE_SECONDS,
        retry_interval_seconds: float = DEFAULT_RETRY_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        self.path = path
        self.worker_id = worker_id
        self.stale_seconds = stale_seconds
        self.retry_interval_seconds = retry_interval_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._sleep = sleep

    @contextmanager
    def hold(self) -> Iterator[LockToken]:
        """Acquire the token for the duration of the block."""

        token = self.acquire()
        try:
            yield token
        finally:
            self.release(token)

    def acquire(self) -> LockToken:
        """Acquire the token or raise ``LockTimeoutError`` after ``max_attempts`` tries."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        holder: str | None = None
        for attempt in range(1, self.max_attempts + 1):
            token = self._try_create()
            if token is not None:
                return token

            existing, age_seconds = self._inspect_existing()
            holder = existing.worker if existing is not None else None
            if age_seconds is not None and age_seconds > self.stale_seconds:
                token = self._take_over(previous=existing, age_seconds=age_seconds)
                if token is not None:
                    return token

            if attempt < self.max_attempts:
                self._sleep(self.retry_interval_seconds)

        raise LockTimeoutError(
            f"Could not acquire queue lock {self.path} after {self.max_attempts} attempts "
            f"(holder={holder or 'unknown'}).",
            holder=holder,
        )

    def release(self, token: LockToken) -> bool:
        """Remove the token file only while it still carries ``token``."""

        current = _read_token(self.path)
        if current != token:
            logger.warning(
                "Queue lock %s no longer held by %s (now %s); leaving it in place",
                self.path,
                token.worker,
                current.worker if current is not None else "nobody",
            )
            return False
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True

    def _new_token(self) -> LockToken:
        return LockToken(worker=self.worker_id, timestamp=int(self._clock() * 1000))

    def _try_create(self) -> LockToken | None:
        token = self._new_token()
        flags = os.O_CREAT | os.O_EXCL | os.O_WRONLY
        try:
            fd = os.open(str(self.path), flags)
        except FileExistsError:
            return None
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(token.to_json())
            handle.flush()
            os.fsync(handle.fileno())
        return token

    def _inspect_existing(self) -> tuple[LockToken | None, float | None]:
        existing = _read_token(self.path)
        now = self._clock()
        if existing is not None:
            return existing, now - existing.timestamp / 1000
        # Unreadable token (holder mid-write or corrupt): judge by file mtime.
        try:
            modified = self.path.stat().st_mtime
        except FileNotFoundError:
            return None, None
        return None, now - modified

    def _take_over(self, *, previous: LockToken | None, age_seconds: float) -> LockToken | None:
        token = self._new_token()
        write_text_atomic(self.path, token.to_json())
        if _read_token(self.path) != token:
            return None
        logger.warning(
            "Took over stale queue lock %s from %s (age %.1fs)",
            self.path,
            previous.worker if previous is not None else "unknown holder",
            age_seconds,
        )
        return token


def read_lock_holder(path: Path) -> LockToken | None:
    """Current token for status readers, without acquiring it."""

    return _read_token(path)


def _read_token(path: Path) -> LockToken | None:
    try:
        payload = json.loads(path.read_text("utf-8"))
    except (FileNotFoundError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    worker = payload.get("worker")
    timestamp = payload.get("timestamp")
    if not isinstance(worker, str) or not isinstance(timestamp, int | float):
        return None
    return LockToken(worker=worker, timestamp=int(timestamp))
