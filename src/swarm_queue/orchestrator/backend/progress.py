"""Coarse progress inference from streamed harness output."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from swarm_queue.orchestrator.backend.base import ProgressCallback, ProgressEvent

logger = logging.getLogger(__name__)

COMPLETE_PERCENT = 100


@dataclass(slots=True, frozen=True)
class PhaseMarker:
    """Output vocabulary that signals one execution phase."""

    phase: str
    percent_complete: int
    description: str
    keywords: tuple[str, ...]


DEFAULT_PHASE_MARKERS: tuple[PhaseMarker, ...] = (
    PhaseMarker("analyzing", 20, "Analyzing codebase", ("Reading", "Analyzing")),
    PhaseMarker("planning", 40, "Planning implementation", ("Planning", "Thinking")),
    PhaseMarker("implementing", 60, "Implementing changes", ("Writing", "Creating")),
    PhaseMarker("testing", 80, "Running tests", ("Testing", "Running")),
)


class ProgressTracker:
    """Emits progress events whose percent never decreases."""

    def __init__(
        self,
        markers: tuple[PhaseMarker, ...],
        callback: ProgressCallback | None,
    ) -> None:
        self.markers = markers
        self.callback = callback
        self.percent_complete = 0
        self.events: list[ProgressEvent] = []

    def feed(self, chunk: str) -> ProgressEvent | None:
        """Scan one output chunk; the furthest phase it mentions wins."""

        matched: PhaseMarker | None = None
        for marker in self.markers:
            if any(keyword in chunk for keyword in marker.keywords) and (
                matched is None or marker.percent_complete > matched.percent_complete
            ):
                matched = marker
        if matched is None or matched.percent_complete <= self.percent_complete:
            return None
        return self._emit(
            ProgressEvent(
                phase=matched.phase,
                percent_complete=matched.percent_complete,
                description=matched.description,
            ),
        )

    def complete(self) -> ProgressEvent | None:
        if self.percent_complete >= COMPLETE_PERCENT:
            return None
        return self._emit(
            ProgressEvent(
                phase="complete",
                percent_complete=COMPLETE_PERCENT,
                description="Complete",
            ),
        )

    def _emit(self, event: ProgressEvent) -> ProgressEvent:
        self.percent_complete = event.percent_complete
        self.events.append(event)
        if self.callback is not None:
            try:
                self.callback(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Harness progress callback failed at %d%%",
                    event.percent_complete,
                )
        return event
