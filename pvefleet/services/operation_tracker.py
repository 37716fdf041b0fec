"""In-memory progress logs for long-running, detached operations.

A log is keyed by a caller-chosen string (``restore-<ctid>``), grows by
appended lines and is completed exactly once. Clients poll ``peek``; the
tracker never interprets the lines, callers classify the outcome.

Every ``start`` issues a new generation number. A writer that passes the
generation it started with can only touch its own log, never one that
replaced it under the same key.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from pvefleet.config import settings
from pvefleet.models.operations import OperationSnapshot
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class OperationLog:
    key: str
    generation: int
    lines: deque = field(default_factory=deque)
    is_complete: bool = False
    dropped_lines: int = 0


class OperationTracker:
    """Thread-safe so executor worker threads may append directly."""

    def __init__(self, max_lines: int | None = None) -> None:
        self._max_lines = max_lines or settings.operation_log_max_lines
        self._logs: dict[str, OperationLog] = {}
        self._lock = threading.Lock()
        self._generations = itertools.count(1)

    def start(self, key: str) -> OperationSnapshot:
        """Begin (or restart) the log for *key* with no lines."""
        with self._lock:
            entry = OperationLog(
                key=key,
                generation=next(self._generations),
                lines=deque(maxlen=self._max_lines),
            )
            self._logs[key] = entry
            snapshot = self._snapshot(entry)
        log.info("operation.started", key=key, generation=entry.generation)
        return snapshot

    def _writable(self, key: str, generation: Optional[int]) -> Optional[OperationLog]:
        entry = self._logs.get(key)
        if entry is None or entry.is_complete:
            return None
        if generation is not None and entry.generation != generation:
            return None
        return entry

    def append(self, key: str, line: str, generation: Optional[int] = None) -> bool:
        with self._lock:
            entry = self._writable(key, generation)
            if entry is None:
                return False
            if len(entry.lines) == entry.lines.maxlen:
                entry.dropped_lines += 1
            entry.lines.append(line)
            return True

    def complete(self, key: str, generation: Optional[int] = None) -> bool:
        """Mark *key* done. Returns False if unknown, superseded or already complete."""
        with self._lock:
            entry = self._writable(key, generation)
            if entry is None:
                return False
            entry.is_complete = True
        log.info("operation.completed", key=key)
        return True

    def peek(self, key: str) -> Optional[OperationSnapshot]:
        with self._lock:
            entry = self._logs.get(key)
            return self._snapshot(entry) if entry else None

    def dismiss(self, key: str) -> bool:
        with self._lock:
            return self._logs.pop(key, None) is not None

    @staticmethod
    def _snapshot(entry: OperationLog) -> OperationSnapshot:
        return OperationSnapshot(
            key=entry.key,
            generation=entry.generation,
            lines=list(entry.lines),
            is_complete=entry.is_complete,
            dropped_lines=entry.dropped_lines,
        )


# ── Singleton instance ────────────────────────────────────────────────────

operation_tracker = OperationTracker()
