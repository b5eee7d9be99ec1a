"""
Memory store: short-term buffers, long-term list, deep memory and metadata.

Invariants:
- Each short-term buffer holds at most its configured capacity; the oldest
  entry is evicted first (recency only, no importance weighting).
- The long-term list only grows through append_long_term. It shrinks only
  through replace_long_term (compression) or clear_long_term (manual).
- Clearing short-term memory never touches long-term or deep memory.
"""

import logging
from collections import deque
from datetime import datetime
from typing import Any, Iterable, Optional

from .config import MemoryConfig
from .models import (
    CompressionMetadata,
    HistoryEntry,
    MemoryItem,
    utcnow,
)

DEFAULT_CLOTHING = {"char": "unknown", "user": "unknown"}
DEFAULT_LOCATION = "unknown"
UNKNOWN_DATE = "unknown"


class MemoryStore:
    """Holds every memory tier of one session."""

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or MemoryConfig()
        self._logger = logger or logging.getLogger(__name__)

        self.short_term: deque[str] = deque(maxlen=self.config.short_term_limit)
        self.short_term_detailed: deque[str] = deque(
            maxlen=self.config.short_term_detailed_limit
        )
        self._long_term: list[MemoryItem] = []
        self.deep_memory: str = ""

        self.compression_enabled = self.config.compression_enabled
        self.metadata = CompressionMetadata()

        self.clothing: dict[str, str] = dict(DEFAULT_CLOTHING)
        self.history: list[HistoryEntry] = []
        self.location: str = DEFAULT_LOCATION
        self.date: Optional[str] = None

    # ── Short-term ──

    def append_short_term(self, content: str, detailed: Optional[str] = None):
        """
        Push one turn to both short-term buffers.

        ``content`` is the compact summary kept in the plain buffer;
        ``detailed`` (defaults to ``content``) is the unredacted turn.
        """
        self.short_term.append(content)
        self.short_term_detailed.append(detailed if detailed is not None else content)

    def clear_short_term(self):
        self.short_term.clear()
        self.short_term_detailed.clear()

    # ── Long-term ──

    @property
    def long_term(self) -> tuple[MemoryItem, ...]:
        return tuple(self._long_term)

    def snapshot(self) -> tuple[MemoryItem, ...]:
        """Immutable view of the long-term list for selection or compression."""
        return tuple(self._long_term)

    def append_long_term(self, item: MemoryItem):
        self._long_term.append(item)
        if self.compression_enabled:
            self.metadata.total_api_calls += 1
        self._logger.debug(
            "Added to long-term memory (%s): %s", item.language, item.content
        )

    def replace_long_term(
        self, items: Iterable[MemoryItem], since: Optional[int] = None
    ):
        """
        Swap the long-term list in one step.

        With ``since`` only the first ``since`` items (a snapshot taken
        earlier) are replaced; items appended after the snapshot are kept
        after the new ones.
        """
        appended = self._long_term[since:] if since is not None else []
        self._long_term = list(items) + appended

    def clear_long_term(self):
        self._long_term = []

    def track_access(self, item: MemoryItem, now: Optional[datetime] = None):
        """Record that ``item`` was surfaced into a prompt."""
        item.touch(now)

    # ── Deep memory ──

    def set_deep_memory(self, text: str) -> dict:
        self.deep_memory = text or ""
        return {"success": True}

    def get_deep_memory(self) -> str:
        return self.deep_memory

    # ── Compression bookkeeping ──

    def record_api_call(self):
        if self.compression_enabled:
            self.metadata.total_api_calls += 1

    def should_compress(self) -> bool:
        return (
            self.compression_enabled
            and self.metadata.total_api_calls >= self.config.compression_frequency
            and len(self._long_term) > self.config.compression_threshold
        )

    def record_compression(self, before_count: int, after_count: int):
        self.metadata.compression_count += 1
        self.metadata.last_compression_time = utcnow()
        self.metadata.memories_before_last_compression = before_count
        self.metadata.memories_after_last_compression = after_count
        self.metadata.total_api_calls = 0

    # ── Scene state ──

    def update_scene(
        self,
        clothing: Optional[dict] = None,
        location: Optional[str] = None,
        date: Optional[str] = None,
    ):
        if isinstance(clothing, dict) and clothing:
            self.clothing = {str(k): str(v) for k, v in clothing.items()}
        if location:
            self.location = str(location)
        if date:
            self.date = str(date)

    def add_history(self, change: str) -> bool:
        """
        Record a relationship milestone.

        A change is skipped when any stored entry already contains its text.
        Substring containment both over- and under-suppresses; it is kept as
        the milestone dedupe rule. Returns True when the entry was added.
        """
        change = (change or "").strip()
        if not change:
            return False
        if any(change in entry.change for entry in self.history):
            self._logger.debug("Skipped duplicate history entry: %s", change)
            return False
        self.history.append(HistoryEntry(change=f"{self.date or UNKNOWN_DATE}: {change}"))
        self._logger.debug("Added relationship history change: %s", change)
        return True

    def clear_history(self):
        self.history = []

    # ── Serialization ──

    def to_dict(self) -> dict[str, Any]:
        return {
            "short_term": list(self.short_term),
            "short_term_detailed": list(self.short_term_detailed),
            "long_term": [item.to_dict() for item in self._long_term],
            "deep_memory": self.deep_memory,
            "compression_enabled": self.compression_enabled,
            "compression_metadata": self.metadata.to_dict(),
            "clothing": dict(self.clothing),
            "history": [entry.to_dict() for entry in self.history],
            "location": self.location,
            "date": self.date,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict,
        config: Optional[MemoryConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "MemoryStore":
        store = cls(config=config, logger=logger)
        for content in data.get("short_term", []):
            store.short_term.append(content)
        for content in data.get("short_term_detailed", []):
            store.short_term_detailed.append(content)
        store._long_term = [MemoryItem.from_dict(d) for d in data.get("long_term", [])]
        store.deep_memory = data.get("deep_memory") or ""
        store.compression_enabled = data.get(
            "compression_enabled", store.compression_enabled
        )
        store.metadata = CompressionMetadata.from_dict(
            data.get("compression_metadata") or {}
        )
        store.clothing = dict(data.get("clothing") or DEFAULT_CLOTHING)
        store.history = [HistoryEntry.from_dict(h) for h in data.get("history", [])]
        store.location = data.get("location") or DEFAULT_LOCATION
        store.date = data.get("date")
        return store
