"""File change inference from harness stdout."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_QUOTED_PATH = re.compile(r"""['"`]([^'"`\s]+\.[A-Za-z0-9]+)['"`]""")


@dataclass(slots=True, frozen=True)
class FileChangeVocabulary:
    """Verbs a harness prints next to created/modified/deleted paths."""

    created: tuple[str, ...] = ("created", "wrote", "generated")
    modified: tuple[str, ...] = ("modified", "updated", "changed")
    deleted: tuple[str, ...] = ("deleted", "removed")


@dataclass(slots=True)
class FileChanges:
    created: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


def parse_file_changes(output: str, vocabulary: FileChangeVocabulary) -> FileChanges:
    """Collect the first quoted path on each line mentioning a change verb."""

    changes = FileChanges()
    for line in output.splitlines():
        match = _QUOTED_PATH.search(line)
        if match is None:
            continue
        path = match.group(1)
        lowered = line.lower()
        for verbs, bucket in (
            (vocabulary.created, changes.created),
            (vocabulary.modified, changes.modified),
            (vocabulary.deleted, changes.deleted),
        ):
            if any(verb in lowered for verb in verbs) and path not in bucket:
                bucket.append(path)
    return changes
