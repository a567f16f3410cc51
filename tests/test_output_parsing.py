from __future__ import annotations

import allure

from swarm_queue.orchestrator.backend.base import TokenUsage
from swarm_queue.orchestrator.backend.file_changes import (
    FileChangeVocabulary,
    parse_file_changes,
)
from swarm_queue.orchestrator.backend.progress import DEFAULT_PHASE_MARKERS, ProgressTracker
from swarm_queue.orchestrator.backend.usage import extract_token_usage

pytestmark = [
    allure.epic("Harness Runtime"),
    allure.feature("Output Telemetry"),
]


def test_progress_never_moves_backwards() -> None:
    events = []
    tracker = ProgressTracker(DEFAULT_PHASE_MARKERS, events.append)

    tracker.feed("Planning the change")
    tracker.feed("Reading src/app.py again")
    tracker.feed("Writing src/app.py")
    tracker.feed("Thinking...")
    tracker.complete()
    tracker.complete()

    assert [(event.phase, event.percent_complete) for event in events] == [
        ("planning", 40),
        ("implementing", 60),
        ("complete", 100),
    ]


def test_progress_chunk_with_several_markers_takes_furthest() -> None:
    tracker = ProgressTracker(DEFAULT_PHASE_MARKERS, None)

    event = tracker.feed("Reading files\nRunning tests\n")

    assert event is not None
    assert event.percent_complete == 80
    assert tracker.events == [event]


def test_token_usage_patterns() -> None:
    assert extract_token_usage("Usage: 1,200 input tokens, 345 output tokens") == TokenUsage(
        input_tokens=1200,
        output_tokens=345,
    )
    assert extract_token_usage('{"usage": {"input_tokens": 10, "output_tokens": 4}}') == (
        TokenUsage(input_tokens=10, output_tokens=4)
    )
    assert extract_token_usage("prompt_tokens=7 completion_tokens=3") == TokenUsage(
        input_tokens=7,
        output_tokens=3,
    )
    assert extract_token_usage("input tokens: 12") == TokenUsage(input_tokens=12, output_tokens=0)
    assert extract_token_usage("nothing to see") is None


def test_file_changes_by_verb() -> None:
    output = "\n".join(
        [
            "Created 'src/new_module.py'",
            'Updated "src/app.py" with the handler',
            "Removed `legacy/old.js`",
            "Created 'src/new_module.py' again",
            "Mentioned 'README.md' without a verb",
        ],
    )

    changes = parse_file_changes(output, FileChangeVocabulary())

    assert changes.created == ["src/new_module.py"]
    assert changes.modified == ["src/app.py"]
    assert changes.deleted == ["legacy/old.js"]
