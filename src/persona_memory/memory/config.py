"""
Memory configuration and language normalization.
"""

import os
from dataclasses import dataclass

DEFAULT_MODEL = "claude-3-7-sonnet-20250219"

# Language aliases accepted from callers → internal language code
LANGUAGE_ALIASES: dict[str, str] = {
    "de": "de",
    "deutsch": "de",
    "german": "de",
    "en": "en",
    "english": "en",
}

DEFAULT_LANGUAGE = "en"


def normalize_language(language: str | None) -> str:
    """Map a free-form language name onto "en" or "de"."""
    if not language:
        return DEFAULT_LANGUAGE
    return LANGUAGE_ALIASES.get(language.strip().lower(), DEFAULT_LANGUAGE)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class MemoryConfig:
    """Configuration for the roleplay memory engine."""

    # Short-term buffers
    short_term_limit: int = 10
    short_term_detailed_limit: int = 2

    # Compression trigger
    compression_enabled: bool = True
    compression_frequency: int = 10  # api calls between compressions
    compression_threshold: int = 5  # long-term items required before compressing
    profile_max_bytes: int = 3096  # second-pass compression above this size

    # Context assembly
    max_context_memories: int = 7
    recent_context_messages: int = 3
    context_snippet_chars: int = 100
    max_context_tokens: int = 2000
    include_all_memories: bool = False

    # Completion window
    history_window: int = 10
    max_history_tokens: int = 8000

    # Oracle calls
    model: str = DEFAULT_MODEL
    oracle_max_tokens: int = 1024
    completion_max_tokens: int = 3072
    max_retries: int = 3
    retry_base_delay: float = 1.0  # 2s, 4s, 8s with the default

    # Persistence
    storage_dir: str = "memory-storage"
    cache_enabled: bool = True
    max_cache_size: int = 20
    auto_save: bool = True

    language: str = DEFAULT_LANGUAGE

    def __post_init__(self):
        self.language = normalize_language(self.language)

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Load configuration from environment variables."""
        return cls(
            short_term_limit=int(os.getenv("MEMORY_SHORT_TERM_LIMIT", "10")),
            short_term_detailed_limit=int(
                os.getenv("MEMORY_SHORT_TERM_DETAILED_LIMIT", "2")
            ),
            compression_enabled=_env_bool("MEMORY_COMPRESSION_ENABLED", "true"),
            compression_frequency=int(os.getenv("MEMORY_COMPRESSION_FREQUENCY", "10")),
            compression_threshold=int(os.getenv("MEMORY_COMPRESSION_THRESHOLD", "5")),
            profile_max_bytes=int(os.getenv("MEMORY_PROFILE_MAX_BYTES", "3096")),
            max_context_memories=int(os.getenv("MEMORY_MAX_CONTEXT_MEMORIES", "7")),
            max_context_tokens=int(os.getenv("MEMORY_MAX_CONTEXT_TOKENS", "2000")),
            include_all_memories=_env_bool("MEMORY_INCLUDE_ALL", "false"),
            history_window=int(os.getenv("MEMORY_HISTORY_WINDOW", "10")),
            max_history_tokens=int(os.getenv("MEMORY_MAX_HISTORY_TOKENS", "8000")),
            model=os.getenv("CLAUDE_MODEL", DEFAULT_MODEL),
            max_retries=int(os.getenv("MEMORY_ORACLE_MAX_RETRIES", "3")),
            retry_base_delay=float(os.getenv("MEMORY_ORACLE_RETRY_DELAY", "1.0")),
            storage_dir=os.getenv("MEMORY_STORAGE_DIR", "memory-storage"),
            cache_enabled=_env_bool("MEMORY_CACHE_ENABLED", "true"),
            max_cache_size=int(os.getenv("MEMORY_MAX_CACHE_SIZE", "20")),
            auto_save=_env_bool("MEMORY_AUTO_SAVE", "true"),
            language=os.getenv("MEMORY_LANGUAGE", DEFAULT_LANGUAGE),
        )
