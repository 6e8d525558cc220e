# SPDX-License-Identifier: MIT
"""Source staleness tracking over the include graph.

The tracker decides whether a source file must be recompiled using only
modification times and the transitive set of headers it includes:

- New: no record of the file exists
- Changed: the file is newer than its record, or something it
  (transitively) includes is Changed or New
- Stable: neither

Records are loaded from a DependencyStore once, refreshed in memory as
files are classified, and written back with save().
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from unibuild.deps.scanner import IncludeScanner
from unibuild.deps.store import DependencyRecord, DependencyStore, Table

logger = logging.getLogger(__name__)

# Timestamps are compared at one-second precision
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class FileState(Enum):
    STABLE = "Stable"
    CHANGED = "Changed"
    NEW = "New"


@dataclass
class TrackedFile:
    """In-memory view of a file's record plus its state for this run.

    Attributes:
        path: Absolute path.
        last_write_time: Formatted modification time.
        depends: Resolved direct includes.
        state: Classification of the file itself (not its includes).
        persist: False when the file couldn't be read; such entries are
            never written to the store.
    """

    path: str
    last_write_time: str
    depends: list[str] = field(default_factory=list)
    state: FileState = FileState.STABLE
    persist: bool = True

    def to_record(self) -> DependencyRecord:
        return DependencyRecord(self.path, self.last_write_time, list(self.depends))


def format_mtime(path: str) -> str:
    """Format a file's modification time with DATE_FORMAT."""
    return datetime.fromtimestamp(os.path.getmtime(path)).strftime(DATE_FORMAT)


def _parse_time(text: str) -> datetime | None:
    try:
        return datetime.strptime(text, DATE_FORMAT)
    except ValueError:
        return None


class DependencyTracker:
    """Classifies source files as New, Changed or Stable.

    Args:
        scanner: Resolves direct includes.
        store: Persisted records; None runs without a cache, so every
            file classifies as New.

    Example:
        tracker = DependencyTracker(IncludeScanner(inc_dirs), store)
        tracker.load()
        stale = [src for src in sources if tracker.classify(src) is not FileState.STABLE]
        tracker.save(Table.STAGING)
    """

    def __init__(self, scanner: IncludeScanner, store: DependencyStore | None = None) -> None:
        self.scanner = scanner
        self.store = store
        self._files: dict[str, TrackedFile] = {}

    def load(self) -> None:
        """Read confirmed records and compute each existing file's own state.

        Files whose timestamp moved forward are rescanned right away so
        the closure walk sees their current includes.
        """
        if self.store is None:
            return

        for path, record in self.store.read_all(Table.CONFIRMED).items():
            if not os.path.isfile(path):
                continue
            tracked = TrackedFile(path, record.last_write_time, list(record.depends))
            current = format_mtime(path)
            previous = _parse_time(record.last_write_time)

            if previous is not None and _parse_time(current) <= previous:
                tracked.state = FileState.STABLE
            else:
                tracked.state = FileState.CHANGED
                tracked.last_write_time = current
                self._rescan(tracked)

            self._files[path] = tracked

        logger.debug("Loaded %d dependency records", len(self._files))

    def _rescan(self, tracked: TrackedFile) -> None:
        depends = self.scanner.scan(tracked.path)
        if depends is None:
            tracked.state = FileState.CHANGED
            tracked.depends = []
            tracked.persist = False
        else:
            tracked.depends = depends

    def _track(self, path: str) -> TrackedFile:
        """Get the tracked entry for a path, scanning it if it's unknown."""
        tracked = self._files.get(path)
        if tracked is not None:
            return tracked

        if os.path.isfile(path):
            tracked = TrackedFile(path, format_mtime(path), state=FileState.NEW)
            self._rescan(tracked)
        else:
            # A vanished include must trigger a rebuild
            tracked = TrackedFile(path, "", state=FileState.CHANGED, persist=False)

        self._files[path] = tracked
        return tracked

    def resolve_includes(self, path: str) -> list[str]:
        """Direct includes of a file, from the cache or a fresh scan."""
        return list(self._track(path).depends)

    def transitive_closure(self, path: str) -> set[str]:
        """All headers reachable from ``path``, excluding ``path`` itself.

        Include cycles are fine: each file is expanded at most once.
        """
        visited = {path}
        stack = list(reversed(self.resolve_includes(path)))
        visited.update(stack)

        while stack:
            header = stack.pop()
            for dep in self.resolve_includes(header):
                if dep not in visited:
                    visited.add(dep)
                    stack.append(dep)

        visited.discard(path)
        return visited

    def file_state(self, path: str) -> FileState:
        """State of the file itself, ignoring its includes."""
        return self._track(path).state

    def classify(self, path: str) -> FileState:
        """State of a source file including everything it includes."""
        state = self.file_state(path)
        # Always walk the closure so every header gets a record
        closure = self.transitive_closure(path)
        if state is not FileState.STABLE:
            return state

        for header in closure:
            if self._files[header].state is not FileState.STABLE:
                return FileState.CHANGED
        return FileState.STABLE

    def records(self) -> list[DependencyRecord]:
        """Records for every readable file seen in this run."""
        return [t.to_record() for t in self._files.values() if t.persist]

    def save(self, table: Table = Table.STAGING) -> None:
        """Write the current records to a store table."""
        if self.store is None:
            return
        self.store.upsert(table, self.records())

    def promote(self) -> None:
        """Make the staged records the confirmed ones."""
        if self.store is not None:
            self.store.promote()
