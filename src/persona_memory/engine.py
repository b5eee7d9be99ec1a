"""
Roleplay chat engine.

Runs one roleplay session against a chat model and keeps its memory:

- Every turn: memory context + system prompt → completion call (retried on
  HTTP 529) → sidecar JSON folded into memory → visible reply returned
- After the turn: the api call counter may trigger memory compression
- State is saved through a persistence adapter after every turn

Models are created with LangChain's init_chat_model, so any provider it
supports works (MODEL_PROVIDER selects one explicitly).
"""

import asyncio
import logging
import os
from typing import Awaitable, Callable, Optional

from dotenv import load_dotenv
from langchain.chat_models import init_chat_model
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from .memory import (
    Categorizer,
    CompressionOrchestrator,
    CompressionResult,
    ContextBuilder,
    JsonFilePersistence,
    MemoryConfig,
    MemoryStore,
    OracleError,
    PersistenceError,
    RecapResult,
    RetrievalSelector,
    Session,
    SummarizationOracle,
    extract_sidecar,
    generate_session_id,
    invoke_with_retry,
    strip_sidecar,
    trim_to_budget,
)
from .memory.sidecar import (
    CLOTHING_KEY,
    DATE_KEY,
    HISTORY_KEY,
    LOCATION_KEY,
    LONG_TERM_KEY,
    SHORT_TERM_KEY,
)
from .prompts import build_system_prompt

logger = logging.getLogger(__name__)


# .env overrides the process environment
load_dotenv(override=True)


DEFAULT_TEMPERATURE = 1.0
SUMMARY_TEMPERATURE = 0.3
RECAP_SEPARATOR = "\n\n---\n\n"

# sidecar memorize-long-term key → categorizer subject
LONG_TERM_SUBJECTS = (("char", "CHARACTER"), ("user", "USER"))


def get_credentials() -> tuple[str | None, str | None]:
    """
    API credentials from the environment (generic names win):

    - API key: API_KEY > ANTHROPIC_API_KEY > ANTHROPIC_AUTH_TOKEN
    - Base URL: API_BASE_URL > ANTHROPIC_BASE_URL

    Returns:
        (api_key, base_url)
    """
    api_key = (
        os.getenv("API_KEY")
        or os.getenv("ANTHROPIC_API_KEY")
        or os.getenv("ANTHROPIC_AUTH_TOKEN")
    )
    base_url = os.getenv("API_BASE_URL") or os.getenv("ANTHROPIC_BASE_URL")
    return api_key, base_url


def check_api_credentials() -> bool:
    api_key, _ = get_credentials()
    return api_key is not None


def create_chat_model(
    model: str, max_tokens: int, temperature: float = DEFAULT_TEMPERATURE
):
    """Chat model for ``model`` with the configured credentials and provider."""
    api_key, base_url = get_credentials()

    init_kwargs = {"temperature": temperature, "max_tokens": max_tokens}
    if api_key:
        init_kwargs["api_key"] = api_key
    if base_url:
        init_kwargs["base_url"] = base_url

    # Provider is inferred from the model name unless set explicitly
    model_provider = os.getenv("MODEL_PROVIDER")
    provider_kwargs = {}
    if model_provider:
        provider_kwargs["model_provider"] = model_provider

    return init_chat_model(model, **provider_kwargs, **init_kwargs)


def _to_langchain(messages: list[dict]) -> list:
    return [
        HumanMessage(content=m["content"])
        if m["role"] == "user"
        else AIMessage(content=m["content"])
        for m in messages
    ]


class RoleplayChatEngine:
    """
    A roleplay session with layered memory.

    Usage:
        engine = create_chat_engine(character_profile=profile)
        reply = await engine.send_message("Hi, who are you?")
        stats = engine.get_compression_stats()
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        config: Optional[MemoryConfig] = None,
        llm=None,
        summary_llm=None,
        persistence=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or MemoryConfig.from_env()
        self._logger = logger or logging.getLogger(__name__)
        self._injected_logger = logger
        self._sleep = sleep

        self.session = session or Session(
            store=MemoryStore(self.config, logger=logger),
            language=self.config.language,
        )
        self.persistence = persistence

        self.llm = llm or create_chat_model(
            self.config.model, self.config.completion_max_tokens
        )
        self.summary_llm = summary_llm or self._create_summary_llm()

        self.categorizer = Categorizer(logger=logger)
        self.selector = RetrievalSelector(
            track_access=lambda item, now: self.session.store.track_access(item, now),
            logger=logger,
        )
        self.context_builder = ContextBuilder(self.config, self.selector, logger=logger)
        self.oracle = SummarizationOracle(
            self.summary_llm,
            max_retries=self.config.max_retries,
            retry_base_delay=self.config.retry_base_delay,
            sleep=sleep,
            logger=logger,
        )
        self.compressor = CompressionOrchestrator(self.oracle, self.config, logger=logger)

    def _create_summary_llm(self):
        """Lower-temperature model for consolidation; None disables it."""
        try:
            return create_chat_model(
                self.config.model, self.config.oracle_max_tokens, SUMMARY_TEMPERATURE
            )
        except Exception as e:
            self._logger.warning("Failed to create summarization model: %s", e)
            return None

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def store(self) -> MemoryStore:
        return self.session.store

    @staticmethod
    def generate_session_id() -> str:
        return generate_session_id()

    # ── Conversation ──

    def build_memory_context(self) -> str:
        if self.config.include_all_memories:
            return self.context_builder.build_full(self.store)
        return self.context_builder.build(self.store)

    def _conversation_window(self) -> list:
        window = trim_to_budget(
            _to_langchain(self.session.messages),
            self.config.history_window,
            self.config.max_history_tokens,
        )
        # The window must open with a user turn
        while window and isinstance(window[0], AIMessage):
            window.pop(0)
        return window

    async def send_message(self, text: str) -> str:
        """
        Run one turn and return the reply without its sidecar JSON.

        Raises:
            OracleError: the completion model failed after retries.
        """
        self.session.add_message("user", text)
        system_prompt = build_system_prompt(self.session, self.build_memory_context())
        messages = [SystemMessage(content=system_prompt)] + self._conversation_window()

        try:
            reply = await invoke_with_retry(
                self.llm,
                messages,
                max_retries=self.config.max_retries,
                base_delay=self.config.retry_base_delay,
                sleep=self._sleep,
                logger=self._logger,
            )
        except OracleError:
            # Leave the transcript as it was before the turn
            self.session.messages.pop()
            raise

        visible = self.process_reply(reply)
        stored = f"{self.store.date} {visible}" if self.store.date else visible
        self.session.add_message("assistant", stored)

        result = await self.compressor.track_api_call(self.session)
        if result is not None and not result.compressed:
            self._logger.warning("Automatic compression skipped: %s", result.error or result.reason)

        if self.config.auto_save:
            await self.save_state()
        return visible

    def process_reply(self, reply: str) -> str:
        """Fold a reply's sidecar into memory; returns the visible text."""
        sidecar = extract_sidecar(reply, self._injected_logger)
        visible = strip_sidecar(reply)
        store = self.store

        summary = sidecar.get(SHORT_TERM_KEY)
        if isinstance(summary, str) and summary.strip():
            store.append_short_term(summary.strip(), detailed=visible)
        else:
            store.append_short_term(visible)

        long_term = sidecar.get(LONG_TERM_KEY)
        if isinstance(long_term, dict):
            for key, subject in LONG_TERM_SUBJECTS:
                fact = long_term.get(key)
                if isinstance(fact, str) and fact.strip():
                    store.append_long_term(
                        self.categorizer.categorize(fact, self.session.language, subject)
                    )

        store.update_scene(
            clothing=sidecar.get(CLOTHING_KEY),
            location=sidecar.get(LOCATION_KEY),
            date=sidecar.get(DATE_KEY),
        )
        history = sidecar.get(HISTORY_KEY)
        if isinstance(history, str):
            store.add_history(history)
        return visible

    # ── Memory management ──

    async def compress_memory(self) -> CompressionResult:
        result = await self.compressor.compress(self.session)
        if result.compressed and self.config.auto_save:
            await self.save_state()
        return result

    def toggle_compression(self, enabled: Optional[bool] = None) -> bool:
        """Set compression on or off (flip when ``enabled`` is None)."""
        store = self.store
        store.compression_enabled = (
            not store.compression_enabled if enabled is None else bool(enabled)
        )
        self._logger.info(
            "Memory compression %s", "enabled" if store.compression_enabled else "disabled"
        )
        return store.compression_enabled

    def get_compression_stats(self) -> dict:
        store = self.store
        stats = store.metadata.to_dict()
        stats.update(
            {
                "enabled": store.compression_enabled,
                "in_progress": self.compressor.is_compressing,
                "long_term_count": len(store.long_term),
                "compression_frequency": self.config.compression_frequency,
                "compression_threshold": self.config.compression_threshold,
                "calls_until_next_check": max(
                    0, self.config.compression_frequency - store.metadata.total_api_calls
                ),
            }
        )
        return stats

    async def set_deep_memory(self, text: str) -> dict:
        result = self.store.set_deep_memory(text)
        if self.config.auto_save:
            await self.save_state()
        return result

    def get_deep_memory(self) -> str:
        return self.store.get_deep_memory()

    async def clear_short_term_memory(self) -> dict:
        """Forget recent turns and the transcript; long-term and deep memory stay."""
        self.store.clear_short_term()
        self.session.clear_messages()
        if self.config.auto_save:
            await self.save_state()
        return {"success": True}

    def get_memory_state(self) -> dict:
        return self.session.to_dict()

    async def recap_history(
        self,
        transfer: bool = False,
        mode: str = "append",
        clear_history: bool = False,
    ) -> RecapResult:
        """
        Turn the relationship timeline into narrative prose.

        With ``transfer`` the prose is appended to (``mode="append"``) or
        replaces (``mode="replace"``) deep memory, and ``clear_history``
        empties the timeline afterwards.
        """
        if mode not in ("append", "replace"):
            raise ValueError(f"Unknown recap mode: {mode!r}")

        store = self.store
        history = list(store.history)
        if not history:
            return RecapResult(False, reason="No history entries")

        try:
            prose = await self.oracle.recap_history(
                history,
                character_name=self.session.character_name,
                language=self.session.language,
                deep_memory=store.deep_memory,
            )
        except OracleError as e:
            self._logger.warning("History recap failed: %s", e)
            return RecapResult(False, error=str(e))

        original_length = len("\n".join(entry.change for entry in history))
        metadata = {
            "date_range": f"{_entry_date(history[0])} to {_entry_date(history[-1])}",
            "entry_count": len(history),
            "original_length": original_length,
            "compressed_length": len(prose),
            "compression_ratio": round(len(prose) / original_length, 2)
            if original_length
            else 0.0,
        }

        if transfer:
            if mode == "append" and store.deep_memory.strip():
                store.set_deep_memory(store.deep_memory + RECAP_SEPARATOR + prose)
            else:
                store.set_deep_memory(prose)
            if clear_history:
                store.clear_history()
            self._logger.info(
                "Transferred recap of %d history entries to deep memory (%s)",
                len(history),
                mode,
            )
            if self.config.auto_save:
                await self.save_state()

        return RecapResult(True, prose=prose, metadata=metadata)

    # ── Persistence ──

    async def save_state(self) -> dict:
        if self.persistence is None:
            return {"success": False, "reason": "Persistence not configured"}
        try:
            return await self.persistence.save(self.session_id, self.session.to_dict())
        except PersistenceError as e:
            self._logger.warning("Failed to save session %s: %s", self.session_id, e)
            return {"success": False, "error": str(e)}

    async def load_state(self, session_id: Optional[str] = None) -> dict:
        if self.persistence is None:
            return {"success": False, "reason": "Persistence not configured"}
        session_id = session_id or self.session_id
        try:
            state = await self.persistence.load(session_id)
        except PersistenceError as e:
            self._logger.warning("Failed to load session %s: %s", session_id, e)
            return {"success": False, "error": str(e)}
        if state is None:
            return {"success": False, "reason": "Session not found"}

        self.session = Session.from_dict(
            state, config=self.config, logger=self._injected_logger
        )
        self._logger.info(
            "Loaded session %s (%d messages, %d long-term memories)",
            self.session_id,
            len(self.session.messages),
            len(self.store.long_term),
        )
        return {"success": True, "session_id": self.session_id}

    async def list_sessions(self) -> list[dict]:
        if self.persistence is None:
            return []
        try:
            return await self.persistence.list_sessions()
        except PersistenceError as e:
            self._logger.warning("Failed to list sessions: %s", e)
            return []

    async def delete_session(self, session_id: Optional[str] = None) -> dict:
        if self.persistence is None:
            return {"success": False, "reason": "Persistence not configured"}
        session_id = session_id or self.session_id
        try:
            return await self.persistence.delete(session_id)
        except PersistenceError as e:
            self._logger.warning("Failed to delete session %s: %s", session_id, e)
            return {"success": False, "error": str(e)}


def _entry_date(entry) -> str:
    """Roleplay date of a ``"<date>: <change>"`` entry, else its timestamp date."""
    date, sep, _ = entry.change.partition(": ")
    return date if sep else entry.timestamp.date().isoformat()


def create_chat_engine(
    session_id: Optional[str] = None,
    character_profile: str = "",
    character_name: Optional[str] = None,
    language: Optional[str] = None,
    config: Optional[MemoryConfig] = None,
) -> RoleplayChatEngine:
    """
    Convenience factory: engine with JSON file persistence from config.

    Args:
        session_id: Session to create (a new id is generated when omitted)
        character_profile: Symbolic character profile text
        character_name: Display name used when the profile has no NAME line
        language: "en"/"english" or "de"/"deutsch"/"german"
        config: Memory configuration (defaults to MemoryConfig.from_env())
    """
    config = config or MemoryConfig.from_env()
    session = Session(
        session_id=session_id or generate_session_id(),
        store=MemoryStore(config),
        character_profile=character_profile,
        language=language or config.language,
    )
    if character_name:
        session.character_name = character_name
    persistence = JsonFilePersistence(
        config.storage_dir,
        cache_enabled=config.cache_enabled,
        max_cache_size=config.max_cache_size,
    )
    return RoleplayChatEngine(session=session, config=config, persistence=persistence)
