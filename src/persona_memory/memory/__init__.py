"""
Layered memory for long-running roleplay conversations.

Each session keeps four tiers and rebuilds a bounded prompt context from them
on every turn:

- Short-term: the last 10 turn summaries (plus the last 2 verbatim turns)
- Long-term: categorized, importance-scored facts taken from the model's
  sidecar JSON
- Deep memory: a user-curated blob that is always injected, never compressed
- Profiles: character and user profiles that long-term memory is
  periodically compressed into
"""

from .config import MemoryConfig, normalize_language
from .models import (
    CompressionMetadata,
    CompressionResult,
    HistoryEntry,
    MemoryItem,
    RecapResult,
    TopicTag,
)
from .sidecar import extract_sidecar, strip_sidecar
from .categorizer import Categorizer
from .store import MemoryStore
from .retriever import RetrievalSelector, relevance_score
from .context import ContextBuilder
from .oracle import OracleError, invoke_with_retry
from .restoration import restore_immutable_tokens
from .summarizer import ProfileSegments, SummarizationOracle
from .session import Session, generate_session_id
from .compressor import CompressionOrchestrator
from .persistence import (
    JsonFilePersistence,
    PersistenceError,
    PostgresPersistence,
    SessionCache,
)
from .token_budget import estimate_tokens, estimate_message_tokens, trim_to_budget

__all__ = [
    "MemoryConfig",
    "normalize_language",
    "CompressionMetadata",
    "CompressionResult",
    "HistoryEntry",
    "MemoryItem",
    "RecapResult",
    "TopicTag",
    "extract_sidecar",
    "strip_sidecar",
    "Categorizer",
    "MemoryStore",
    "RetrievalSelector",
    "relevance_score",
    "ContextBuilder",
    "OracleError",
    "invoke_with_retry",
    "restore_immutable_tokens",
    "ProfileSegments",
    "SummarizationOracle",
    "Session",
    "generate_session_id",
    "CompressionOrchestrator",
    "JsonFilePersistence",
    "PersistenceError",
    "PostgresPersistence",
    "SessionCache",
    "estimate_tokens",
    "estimate_message_tokens",
    "trim_to_budget",
]
