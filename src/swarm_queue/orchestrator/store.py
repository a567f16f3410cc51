"""Line-delimited JSON record store for work items."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from swarm_queue.orchestrator.models import WorkItem

logger = logging.getLogger(__name__)

# Bytes from foreign producers that are not UTF-8 survive a read-write cycle.
_UNDECODABLE = "surrogateescape"


@dataclass(slots=True)
class OpaqueRecord:
    """Stored line that is not a usable work item, written back unchanged."""

    line: str
    reason: str


class RecordSet:
    """Full in-memory view of the store for one exclusive-access cycle."""

    def __init__(self, entries: list[WorkItem | OpaqueRecord] | None = None) -> None:
        self._entries: list[WorkItem | OpaqueRecord] = list(entries or [])

    def __iter__(self) -> Iterator[WorkItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def items(self) -> list[WorkItem]:
        """Work items in stored order."""

        return [entry for entry in self._entries if isinstance(entry, WorkItem)]

    @property
    def opaque(self) -> list[OpaqueRecord]:
        return [entry for entry in self._entries if isinstance(entry, OpaqueRecord)]

    def get(self, item_id: str) -> WorkItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def index(self) -> dict[str, WorkItem]:
        """Map item ids to items; the first occurrence wins on duplicate ids."""

        by_id: dict[str, WorkItem] = {}
        for item in self.items:
            by_id.setdefault(item.id, item)
        return by_id

    def add(self, item: WorkItem) -> None:
        if self.get(item.id) is not None:
            raise ValueError(f"Work item already exists: {item.id}")
        self._entries.append(item)

    def serialize(self) -> str:
        lines: list[str] = []
        for entry in self._entries:
            if isinstance(entry, OpaqueRecord):
                lines.append(entry.line)
            else:
                lines.append(encode_record(entry))
        if not lines:
            return ""
        return "\n".join(lines) + "\n"


def encode_record(item: WorkItem) -> str:
    return json.dumps(item.to_record(), ensure_ascii=False, separators=(",", ":"))


def parse_records(text: str, *, source: str = "<memory>") -> RecordSet:
    """Parse store text; blank lines are dropped, unusable lines become opaque.

    Records are separated by ``\\n`` only: compact JSON keeps U+2028, U+2029 and
    U+0085 unescaped, so ``str.splitlines`` would cut records apart. Bytes that
    are not UTF-8 arrive as surrogate escapes and keep their line opaque.
    """

    entries: list[WorkItem | OpaqueRecord] = []
    for line_no, raw_line in enumerate(text.split("\n"), start=1):
        line = raw_line.strip()
        if not line:
            continue
        try:
            line.encode("utf-8")
        except UnicodeEncodeError:
            logger.warning("Keeping non-UTF-8 record %s:%d verbatim", source, line_no)
            entries.append(OpaqueRecord(line=raw_line, reason="record is not valid UTF-8"))
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as error:
            logger.warning("Keeping malformed record %s:%d verbatim: %s", source, line_no, error)
            entries.append(OpaqueRecord(line=raw_line, reason=f"invalid JSON: {error}"))
            continue
        if not isinstance(record, dict):
            logger.warning("Keeping non-object record %s:%d verbatim", source, line_no)
            entries.append(OpaqueRecord(line=raw_line, reason="record is not a JSON object"))
            continue
        try:
            entries.append(WorkItem.from_record(record))
        except (TypeError, ValueError) as error:
            logger.warning(
                "Keeping unrecognized record %s:%d verbatim: %s",
                source,
                line_no,
                error,
            )
            entries.append(OpaqueRecord(line=raw_line, reason=str(error)))
    return RecordSet(entries)


class JsonlRecordStore:
    """Reads and atomically rewrites the whole work item collection."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> RecordSet:
        """Parse the current file contents; a missing file is an empty store."""

        try:
            with self.path.open("r", encoding="utf-8", errors=_UNDECODABLE, newline="") as handle:
                text = handle.read()
        except FileNotFoundError:
            return RecordSet()
        return parse_records(text, source=str(self.path))

    def write(self, records: RecordSet) -> None:
        """Replace the store with ``records`` via write-new-then-rename."""

        write_text_atomic(self.path, records.serialize())


def write_text_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors=_UNDECODABLE, newline="") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
