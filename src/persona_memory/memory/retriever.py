"""
Retrieval selector for long-term memory.

Chooses a bounded, relevance-ranked subset of long-term memory to inject
into the next prompt.

Topic-based selection (two passes):
  - Pass 1 (coverage): for each priority group, at most one anchor item
    (subtopic "core" or "milestones", or a bare [GROUP] tag), highest
    importance first. Identity facts are never starved out by recency.
  - Pass 2 (relevance): the remaining items ranked by
        0.5 * importance + 0.3 * recency + 0.2 * access_frequency
    where recency = max(0, 1 - age_days / 30) and
    access_frequency = min(1, access_count / 5).

Category-based selection is the fallback when no item carries topic
metadata (flat legacy tags such as [PERSONAL] do not count as topics): one item per legacy category, then the most recent compressed
items, then the most recent uncompressed ones.

Every item returned has its access tracked exactly once, unless the caller
defers tracking to the items it actually shows.
"""

import logging
import re
from datetime import datetime
from typing import Callable, Optional, Sequence

from .categorizer import contains_keyword
from .keywords import LEGACY_CATEGORY_KEYWORDS, LEGACY_CATEGORY_ORDER
from .models import MemoryItem, utcnow

PRIORITY_GROUPS = (
    "USER_IDENTITY",
    "CHARACTER_IDENTITY",
    "RELATIONSHIP",
    "CONVERSATION_THREADS",
)
ANCHOR_SUBTOPICS = ("core", "milestones")

IMPORTANCE_WEIGHT = 0.5
RECENCY_WEIGHT = 0.3
ACCESS_WEIGHT = 0.2
RECENCY_WINDOW_DAYS = 30
ACCESS_SATURATION = 5

_LEGACY_TAG_PATTERN = re.compile(r"^\[([A-Z_]+)\]")


def relevance_score(item: MemoryItem, now: Optional[datetime] = None) -> float:
    """Weighted blend of importance, recency of creation and access frequency."""
    now = now or utcnow()
    age_days = (now - item.timestamp).total_seconds() / 86400
    recency = max(0.0, 1 - age_days / RECENCY_WINDOW_DAYS)
    access = min(1.0, item.access_count / ACCESS_SATURATION)
    return (
        item.importance * IMPORTANCE_WEIGHT
        + recency * RECENCY_WEIGHT
        + access * ACCESS_WEIGHT
    )


def legacy_category(item: MemoryItem) -> str:
    """Flat category from a [CATEGORY] tag or keyword inference."""
    match = _LEGACY_TAG_PATTERN.match(item.content)
    if match and match.group(1) in LEGACY_CATEGORY_ORDER:
        return match.group(1)
    for category, keywords in LEGACY_CATEGORY_KEYWORDS:
        if contains_keyword(item.content, keywords):
            return category
    return "OTHER"


class RetrievalSelector:
    """Selects the long-term memories surfaced into a prompt."""

    def __init__(
        self,
        track_access: Optional[Callable[[MemoryItem, datetime], None]] = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ):
        self._track_access = track_access or (lambda item, now: item.touch(now))
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    def select(
        self, memories: Sequence[MemoryItem], max_items: int, track: bool = True
    ) -> list[MemoryItem]:
        """
        Return at most ``max_items`` memories and record their access.

        Callers that may still drop some of the result pass ``track=False``
        and call ``track`` for the items they actually use.
        """
        if max_items <= 0 or not memories:
            return []

        now = self._clock()
        if any(self._has_topic(item) for item in memories):
            selected = self._select_by_topic(memories, max_items, now)
            strategy = "topic"
        else:
            selected = self._select_by_category(memories, max_items)
            strategy = "category"

        if track:
            self.track(selected, now)

        self._logger.debug(
            "Selected %d of %d memories (%s-based)",
            len(selected),
            len(memories),
            strategy,
        )
        return selected

    def track(self, items: Sequence[MemoryItem], now: Optional[datetime] = None):
        """Record that ``items`` were surfaced into a prompt."""
        now = now or self._clock()
        for item in items:
            self._track_access(item, now)

    @staticmethod
    def _has_topic(item: MemoryItem) -> bool:
        # a flat [PERSONAL]-style tag is a legacy category, not a topic
        tag = item.topic
        return tag is not None and not (
            tag.subtopic is None and tag.group in LEGACY_CATEGORY_ORDER
        )

    def _select_by_topic(
        self, memories: Sequence[MemoryItem], max_items: int, now: datetime
    ) -> list[MemoryItem]:
        selected: list[MemoryItem] = []

        # Pass 1: one anchor per priority group
        for group in PRIORITY_GROUPS:
            if len(selected) >= max_items:
                break
            anchors = [item for item in memories if self._is_anchor(item, group)]
            if anchors:
                anchors.sort(key=lambda item: item.importance, reverse=True)
                selected.append(anchors[0])

        # Pass 2: fill by relevance
        remaining_slots = max_items - len(selected)
        if remaining_slots > 0:
            chosen = {id(item) for item in selected}
            candidates = [item for item in memories if id(item) not in chosen]
            candidates.sort(key=lambda item: relevance_score(item, now), reverse=True)
            selected.extend(candidates[:remaining_slots])

        return selected

    @staticmethod
    def _is_anchor(item: MemoryItem, group: str) -> bool:
        tag = item.topic
        if tag is None or tag.group != group:
            return False
        # A tag without subtopic may still be important
        return tag.subtopic is None or tag.subtopic in ANCHOR_SUBTOPICS

    @staticmethod
    def _select_by_category(
        memories: Sequence[MemoryItem], max_items: int
    ) -> list[MemoryItem]:
        buckets: dict[str, list[MemoryItem]] = {}
        for item in memories:
            buckets.setdefault(legacy_category(item), []).append(item)

        selected = [
            buckets[category][0]
            for category in LEGACY_CATEGORY_ORDER
            if buckets.get(category)
        ][:max_items]

        for compressed in (True, False):
            if len(selected) >= max_items:
                break
            chosen = {id(item) for item in selected}
            recent = sorted(
                (
                    item
                    for item in memories
                    if item.compressed == compressed and id(item) not in chosen
                ),
                key=lambda item: item.timestamp,
                reverse=True,
            )
            selected.extend(recent[: max_items - len(selected)])

        return selected
