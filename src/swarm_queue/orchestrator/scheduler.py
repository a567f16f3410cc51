"""Claim policy: which ready item a worker takes next."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from swarm_queue.orchestrator.models import PRIORITY_ORDER, WorkItem, WorkItemStatus


def unmet_prerequisites(item: WorkItem, by_id: Mapping[str, WorkItem]) -> list[str]:
    """Dependency/blocker ids that are missing or not yet completed."""

    unmet: list[str] = []
    for prerequisite_id in item.prerequisites:
        prerequisite = by_id.get(prerequisite_id)
        if prerequisite is None or prerequisite.status != WorkItemStatus.COMPLETED:
            unmet.append(prerequisite_id)
    return unmet


def is_claimable(item: WorkItem, by_id: Mapping[str, WorkItem]) -> bool:
    return item.status == WorkItemStatus.READY and not unmet_prerequisites(item, by_id)


def select_next_claimable(items: Sequence[WorkItem]) -> WorkItem | None:
    """First claimable item by priority tier, stored order within a tier."""

    by_id: dict[str, WorkItem] = {}
    for item in items:
        by_id.setdefault(item.id, item)

    for priority in PRIORITY_ORDER:
        for item in items:
            if item.priority != priority:
                continue
            if is_claimable(item, by_id):
                return item
    return None
