"""
Persona Memory - layered memory for long-running LLM roleplay.

A roleplay engine that remembers: it decides what to keep from an open-ended
dialogue, compresses it into character and user profiles as it grows, and
rebuilds a token-bounded prompt context on every turn.
"""

from .engine import (
    RoleplayChatEngine,
    check_api_credentials,
    create_chat_engine,
    create_chat_model,
    get_credentials,
)
from .memory import MemoryConfig, OracleError, PersistenceError, Session

__all__ = [
    "RoleplayChatEngine",
    "create_chat_engine",
    "create_chat_model",
    "get_credentials",
    "check_api_credentials",
    "MemoryConfig",
    "OracleError",
    "PersistenceError",
    "Session",
]

__version__ = "0.1.0"
