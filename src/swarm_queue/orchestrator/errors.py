"""Exceptions raised by queue coordination and harness configuration."""

from __future__ import annotations


class LockTimeoutError(RuntimeError):
    """Exclusive access to the queue could not be acquired within the attempt bound."""

    def __init__(self, message: str, *, holder: str | None = None) -> None:
        super().__init__(message)
        self.holder = holder


class HarnessConfigError(ValueError):
    """Harness settings cannot produce a runnable command."""
