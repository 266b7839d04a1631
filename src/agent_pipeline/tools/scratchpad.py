"""In-memory scratchpad shared by the agents of one or more nodes.

Delegation inside a node may write concurrently, so every operation takes
the storage lock.
"""

from __future__ import annotations

import fnmatch
import threading
from datetime import UTC, datetime

from pydantic import BaseModel

ENTRY_SIZE_BYTES = 3_000_000
TOTAL_SIZE_BYTES = 100_000_000_000


class ScratchpadEntry(BaseModel):
    path: str
    title: str
    content: str
    updated_at: str

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


def _require_path(path: str) -> str:
    if not path or not path.strip():
        raise ValueError("path is required")
    return path.strip()


class ScratchpadStorage:
    """Thread-safe path -> note store exposed to agents as a tool."""

    def __init__(
        self,
        *,
        entry_size_limit: int = ENTRY_SIZE_BYTES,
        total_size_limit: int = TOTAL_SIZE_BYTES,
    ) -> None:
        self._entries: dict[str, ScratchpadEntry] = {}
        self._lock = threading.Lock()
        self._entry_size_limit = entry_size_limit
        self._total_size_limit = total_size_limit

    def write(self, path: str, content: str, *, title: str) -> ScratchpadEntry:
        """Create or replace the entry stored at ``path``.

        Raises:
            ValueError: If arguments are empty or a size limit is exceeded.
        """
        path = _require_path(path)
        if not title or not title.strip():
            raise ValueError("title is required")

        entry = ScratchpadEntry(
            path=path, title=title.strip(), content=content, updated_at=_utc_iso_now()
        )
        if entry.size > self._entry_size_limit:
            raise ValueError(
                f"Content exceeds maximum size ({self._entry_size_limit} bytes) for {path}"
            )

        with self._lock:
            previous = self._entries.get(path)
            projected = self._total_size_unlocked() - (previous.size if previous else 0)
            if projected + entry.size > self._total_size_limit:
                raise ValueError(f"Scratchpad full ({self._total_size_limit} bytes limit)")
            self._entries[path] = entry
        return entry

    def read(self, path: str) -> str:
        """Return the content stored at ``path``; KeyError when missing."""
        path = _require_path(path)
        with self._lock:
            entry = self._entries.get(path)
        if entry is None:
            raise KeyError(f"scratchpad://{path} not found")
        return entry.content

    def delete(self, path: str) -> None:
        path = _require_path(path)
        with self._lock:
            if path not in self._entries:
                raise KeyError(f"scratchpad://{path} not found")
            del self._entries[path]

    def list(self, prefix: str | None = None) -> list[ScratchpadEntry]:  # noqa: A003
        with self._lock:
            entries = list(self._entries.values())
        if prefix:
            entries = [e for e in entries if e.path.startswith(prefix)]
        return sorted(entries, key=lambda e: e.path)

    def glob(self, pattern: str) -> list[ScratchpadEntry]:
        if not pattern:
            raise ValueError("pattern is required")
        return [e for e in self.list() if fnmatch.fnmatchcase(e.path, pattern)]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def size(self) -> int:
        """Number of stored entries."""
        with self._lock:
            return len(self._entries)

    @property
    def total_size(self) -> int:
        with self._lock:
            return self._total_size_unlocked()

    def _total_size_unlocked(self) -> int:
        return sum(e.size for e in self._entries.values())
