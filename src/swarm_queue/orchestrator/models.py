"""Domain models for the file-backed work queue."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

DEFAULT_MAX_RETRIES = 2

_KNOWN_KEYS: tuple[str, ...] = (
    "id",
    "title",
    "description",
    "status",
    "priority",
    "dependencies",
    "blockers",
    "assignedWorker",
    "retryCount",
    "maxRetries",
    "createdAt",
    "updatedAt",
    "completedAt",
    "lastError",
)


class WorkItemStatus(str, Enum):
    """Durable work item lifecycle states."""

    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkItemPriority(str, Enum):
    """Claim priority tiers, most urgent first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_ORDER: tuple[WorkItemPriority, ...] = (
    WorkItemPriority.CRITICAL,
    WorkItemPriority.HIGH,
    WorkItemPriority.MEDIUM,
    WorkItemPriority.LOW,
)


class FailureClass(str, Enum):
    """Normalized failure classes attached to failed attempts."""

    SPAWN_FAILURE = "spawn_failure"
    TIMEOUT_KILL = "timeout_kill"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    BACKEND_TRANSIENT = "backend_transient"
    HARNESS_ERROR = "harness_error"


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def utc_timestamp() -> str:
    """Current UTC timestamp in the persisted ISO-8601 form."""

    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(slots=True)
class WorkItemCreate:
    """Input payload for enqueuing a work item."""

    title: str
    description: str = ""
    item_id: str | None = None
    priority: WorkItemPriority = WorkItemPriority.MEDIUM
    dependencies: tuple[str, ...] = ()
    blockers: tuple[str, ...] = ()
    max_retries: int = DEFAULT_MAX_RETRIES
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class WorkItem:
    """One queued unit of work as persisted in the record store."""

    id: str
    title: str
    description: str
    status: WorkItemStatus
    priority: WorkItemPriority
    dependencies: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    assigned_worker: str | None = None
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    created_at: str | None = None
    updated_at: str | None = None
    completed_at: str | None = None
    last_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def prerequisites(self) -> list[str]:
        """Dependency and blocker ids, de-duplicated in declaration order."""

        return list(dict.fromkeys([*self.dependencies, *self.blockers]))

    def touch(self) -> None:
        self.updated_at = utc_timestamp()

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> WorkItem:
        """Build an item from one decoded JSON line.

        Raises ``ValueError`` when the record cannot be interpreted as a work item;
        the store keeps such lines verbatim instead of dropping them.
        """

        item_id = record.get("id")
        if not isinstance(item_id, str) or not item_id.strip():
            raise ValueError(f"Work item record has no usable id: {item_id!r}")
        status = WorkItemStatus(record.get("status", WorkItemStatus.READY.value))
        priority = WorkItemPriority(record.get("priority", WorkItemPriority.MEDIUM.value))
        return cls(
            id=item_id,
            title=str(record.get("title") or ""),
            description=str(record.get("description") or ""),
            status=status,
            priority=priority,
            dependencies=_id_list(record.get("dependencies"), field_name="dependencies"),
            blockers=_id_list(record.get("blockers"), field_name="blockers"),
            assigned_worker=_optional_str(record.get("assignedWorker")),
            retry_count=_non_negative_int(record.get("retryCount"), default=0),
            max_retries=_non_negative_int(record.get("maxRetries"), default=DEFAULT_MAX_RETRIES),
            created_at=_optional_str(record.get("createdAt")),
            updated_at=_optional_str(record.get("updatedAt")),
            completed_at=_optional_str(record.get("completedAt")),
            last_error=_optional_str(record.get("lastError")),
            extra={key: value for key, value in record.items() if key not in _KNOWN_KEYS},
        )

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted key layout; extension fields follow known keys."""

        record: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "dependencies": list(self.dependencies),
            "blockers": list(self.blockers),
        }
        if self.assigned_worker is not None:
            record["assignedWorker"] = self.assigned_worker
        record["retryCount"] = self.retry_count
        record["maxRetries"] = self.max_retries
        if self.created_at is not None:
            record["createdAt"] = self.created_at
        if self.updated_at is not None:
            record["updatedAt"] = self.updated_at
        if self.completed_at is not None:
            record["completedAt"] = self.completed_at
        if self.last_error is not None:
            record["lastError"] = self.last_error
        record.update(self.extra)
        return record


def _id_list(value: Any, *, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise ValueError(f"Work item field {field_name} must be a list of ids, got {value!r}")
    return [str(entry) for entry in value]


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _non_negative_int(value: Any, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"Expected integer, got {value!r}")
    parsed = int(value)
    if parsed < 0:
        raise ValueError(f"Expected non-negative integer, got {parsed}")
    return parsed
