"""
Session: one roleplay conversation and everything it remembers.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import MemoryConfig, normalize_language
from .models import format_timestamp, utcnow
from .store import MemoryStore

DEFAULT_CHARACTER_NAME = "Character"

DEFAULT_USER_PROFILE = """NAME:
ID: ///
LOOKS:
CORE:
SPEECH:
TOPICS:
TRIGGERS:
PHRASES:"""

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """``session_<epoch millis>_<8 random chars>``"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))
    return f"session_{int(time.time() * 1000)}_{suffix}"


@dataclass
class Session:
    """
    A roleplay session.

    ``messages`` is the visible conversation as ``{"role", "content"}`` dicts
    with roles "user" and "assistant"; it is trimmed to a window before each
    completion call but kept whole here.
    """

    session_id: str = field(default_factory=generate_session_id)
    store: MemoryStore = field(default_factory=MemoryStore)
    character_profile: str = ""
    user_profile: str = DEFAULT_USER_PROFILE
    character_name: str = DEFAULT_CHARACTER_NAME
    language: str = "en"
    messages: list[dict] = field(default_factory=list)

    def __post_init__(self):
        self.language = normalize_language(self.language)

    def add_message(self, role: str, content: str):
        self.messages.append({"role": role, "content": content})

    def clear_messages(self):
        self.messages = []

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "character_name": self.character_name,
            "character_profile": self.character_profile,
            "user_profile": self.user_profile,
            "language": self.language,
            "messages": list(self.messages),
            "memory_state": self.store.to_dict(),
            "timestamp": format_timestamp(utcnow()),
        }

    @classmethod
    def from_dict(
        cls,
        data: dict,
        config: Optional[MemoryConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "Session":
        return cls(
            session_id=data.get("session_id") or generate_session_id(),
            store=MemoryStore.from_dict(
                data.get("memory_state") or {}, config=config, logger=logger
            ),
            character_profile=data.get("character_profile") or "",
            user_profile=data.get("user_profile") or DEFAULT_USER_PROFILE,
            character_name=data.get("character_name") or DEFAULT_CHARACTER_NAME,
            language=data.get("language", "en"),
            messages=[
                m
                for m in data.get("messages", [])
                if isinstance(m, dict) and m.get("role") in ("user", "assistant")
            ],
        )
