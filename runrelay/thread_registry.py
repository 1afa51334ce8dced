"""
Append-only log of conversation threads created on the run service.

One line per thread, oldest first:

    <thread_id> - <ISO-8601 timestamp>
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

_SEPARATOR = " - "


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ThreadRecord:
    thread_id: str
    created_at: str


class ThreadRegistry:
    def __init__(self, *, file_path: str) -> None:
        self.file_path = Path(file_path)
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, thread_id: str, created_at: str | None = None) -> ThreadRecord:
        record = ThreadRecord(thread_id=thread_id.strip(), created_at=created_at or utc_now_iso())
        if not record.thread_id:
            raise ValueError("thread_id must be non-empty")
        with self._lock:
            with self.file_path.open("a", encoding="utf-8") as fh:
                fh.write(f"{record.thread_id}{_SEPARATOR}{record.created_at}\n")
        return record

    def list_recent(self, n: int) -> list[ThreadRecord]:
        if n <= 0:
            return []
        records = self._read()
        return list(reversed(records[-n:]))

    def resolve(self, selection: int | str | None, limit: int) -> str | None:
        """Map a 1-based selection from ``list_recent(limit)`` to a thread id, or None."""
        if selection is None:
            return None
        if isinstance(selection, str):
            selection = selection.strip()
            if not selection.isdigit():
                return None
            selection = int(selection)
        recent = self.list_recent(limit)
        if selection < 1 or selection > len(recent):
            return None
        return recent[selection - 1].thread_id

    def _read(self) -> list[ThreadRecord]:
        with self._lock:
            try:
                raw = self.file_path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return []
        records: list[ThreadRecord] = []
        for line in raw.splitlines():
            if not line.strip():
                continue
            thread_id, sep, created_at = line.partition(_SEPARATOR)
            if not sep or not thread_id.strip():
                continue
            records.append(ThreadRecord(thread_id=thread_id.strip(), created_at=created_at.strip()))
        return records
