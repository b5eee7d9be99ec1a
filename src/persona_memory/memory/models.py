"""
Memory data model.

MemoryItem is the unit of long-term memory. Items are owned by the
MemoryStore; only access tracking and compression mutate them.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

# [GROUP] or [GROUP:subtopic] at the start of a memory
TOPIC_TAG_PATTERN = re.compile(r"^\[([\w_]+)(?::([^\]]+))?\]")

IDENTITY_GROUPS = ("USER_IDENTITY", "CHARACTER_IDENTITY")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (including a trailing "Z") into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def clamp_importance(value: Any) -> float:
    """Clamp a heuristic score into [0, 1]; unusable values become 0.5."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.5
    if score != score:  # NaN
        return 0.5
    return min(max(score, 0.0), 1.0)


@dataclass(frozen=True)
class TopicTag:
    """Two-level category such as USER_IDENTITY:core."""

    group: str
    subtopic: Optional[str] = None

    @classmethod
    def parse(cls, content: str) -> Optional["TopicTag"]:
        match = TOPIC_TAG_PATTERN.match(content or "")
        if not match:
            return None
        return cls(group=match.group(1), subtopic=match.group(2) or None)

    @property
    def is_identity(self) -> bool:
        return self.group in IDENTITY_GROUPS

    def __str__(self) -> str:
        if self.subtopic:
            return f"[{self.group}:{self.subtopic}]"
        return f"[{self.group}]"


@dataclass
class MemoryItem:
    """A single long-term memory."""

    content: str
    timestamp: datetime = field(default_factory=utcnow)
    topic_group: Optional[str] = None
    subtopic: Optional[str] = None
    importance: float = 0.5
    access_count: int = 0
    last_accessed: Optional[datetime] = None
    compressed: bool = False
    language: str = "en"

    def __post_init__(self):
        self.importance = clamp_importance(self.importance)
        self.access_count = max(int(self.access_count or 0), 0)
        # naive datetimes are taken as UTC so ages can be compared
        self.timestamp = parse_timestamp(self.timestamp) or utcnow()
        self.last_accessed = parse_timestamp(self.last_accessed)

    @property
    def topic(self) -> Optional[TopicTag]:
        """Structured topic fields first, then a tag at the start of the content."""
        if self.topic_group:
            return TopicTag(self.topic_group, self.subtopic)
        return TopicTag.parse(self.content)

    def touch(self, now: Optional[datetime] = None):
        self.access_count += 1
        self.last_accessed = now or utcnow()

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "timestamp": format_timestamp(self.timestamp),
            "topic_group": self.topic_group,
            "subtopic": self.subtopic,
            "importance": self.importance,
            "access_count": self.access_count,
            "last_accessed": format_timestamp(self.last_accessed),
            "compressed": self.compressed,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryItem":
        # Older snapshots used camelCase keys
        return cls(
            content=data.get("content", ""),
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
            topic_group=data.get("topic_group", data.get("topicGroup")),
            subtopic=data.get("subtopic"),
            importance=data.get("importance", 0.5),
            access_count=data.get("access_count", data.get("accessCount", 0)),
            last_accessed=parse_timestamp(
                data.get("last_accessed", data.get("lastAccessed"))
            ),
            compressed=bool(data.get("compressed", False)),
            language=data.get("language", "en"),
        )


@dataclass
class HistoryEntry:
    """A relationship milestone."""

    change: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {"change": self.change, "timestamp": format_timestamp(self.timestamp)}

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            change=str(data.get("change", "")),
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
        )


@dataclass
class CompressionMetadata:
    total_api_calls: int = 0
    compression_count: int = 0
    last_compression_time: Optional[datetime] = None
    memories_before_last_compression: int = 0
    memories_after_last_compression: int = 0

    def to_dict(self) -> dict:
        return {
            "total_api_calls": self.total_api_calls,
            "compression_count": self.compression_count,
            "last_compression_time": format_timestamp(self.last_compression_time),
            "memories_before_last_compression": self.memories_before_last_compression,
            "memories_after_last_compression": self.memories_after_last_compression,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CompressionMetadata":
        return cls(
            total_api_calls=int(data.get("total_api_calls", 0)),
            compression_count=int(data.get("compression_count", 0)),
            last_compression_time=parse_timestamp(data.get("last_compression_time")),
            memories_before_last_compression=int(
                data.get("memories_before_last_compression", 0)
            ),
            memories_after_last_compression=int(
                data.get("memories_after_last_compression", 0)
            ),
        )


@dataclass
class CompressionResult:
    """Outcome of a compression attempt; never raised, always returned."""

    compressed: bool
    reason: Optional[str] = None
    error: Optional[str] = None
    original_count: int = 0
    compressed_count: int = 0
    restored_tokens: list[str] = field(default_factory=list)
    character_profile: Optional[str] = None
    user_profile: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"compressed": self.compressed}
        if self.reason:
            data["reason"] = self.reason
        if self.error:
            data["error"] = self.error
        if self.compressed:
            data["original_count"] = self.original_count
            data["compressed_count"] = self.compressed_count
            data["restored_tokens"] = list(self.restored_tokens)
        return data


@dataclass
class RecapResult:
    """Outcome of turning the relationship timeline into prose."""

    success: bool
    prose: str = ""
    error: Optional[str] = None
    reason: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["prose"] = self.prose
            data["metadata"] = dict(self.metadata)
        if self.error:
            data["error"] = self.error
        if self.reason:
            data["reason"] = self.reason
        return data
