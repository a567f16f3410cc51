"""Deterministic harness failure classification for attempt reporting."""

from __future__ import annotations

from dataclasses import dataclass

from swarm_queue.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

DEFAULT_STDERR_FAILURE_MARKERS: tuple[str, ...] = ("error", "failed")

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "try again later",
    "temporarily unavailable",
    "connection reset",
    "network error",
    "could not resolve host",
)
_TRANSIENT_EXIT_CODES: tuple[int, ...] = (137, 143)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_pattern: str | None


def first_failure_marker(stderr: str, markers: tuple[str, ...]) -> str | None:
    """First failure word present in stderr, case-insensitive."""

    return _first_match(stderr.lower(), markers)


def classify_failure(  # noqa: PLR0913
    *,
    harness: str,
    exit_code: int | None,
    stdout: str,
    stderr: str,
    timed_out: bool = False,
    spawn_failed: bool = False,
) -> FailureClassification:
    """Classify one failed attempt; order matters, first rule wins."""

    if spawn_failed:
        return FailureClassification(
            failure_class=FailureClass.SPAWN_FAILURE,
            reason_code=f"{harness}_spawn_failure",
            matched_pattern=None,
        )
    if timed_out:
        return FailureClassification(
            failure_class=FailureClass.TIMEOUT_KILL,
            reason_code=f"{harness}_timeout_kill",
            matched_pattern=None,
        )

    haystack = f"{stderr}\n{stdout}".lower()
    for failure_class, patterns in (
        (FailureClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
        (FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
        (FailureClass.BACKEND_TRANSIENT, _TRANSIENT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureClassification(
                failure_class=failure_class,
                reason_code=f"{harness}_{failure_class.value}",
                matched_pattern=pattern,
            )

    if exit_code in _TRANSIENT_EXIT_CODES:
        return FailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"{harness}_transient_exit_code",
            matched_pattern=None,
        )
    return FailureClassification(
        failure_class=FailureClass.HARNESS_ERROR,
        reason_code=f"{harness}_harness_error",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
