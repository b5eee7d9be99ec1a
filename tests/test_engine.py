"""
Tests for the roleplay chat engine: turns, recaps, stats and persistence.
"""

import json
import re
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from conftest import StatusError, make_llm
from persona_memory.engine import (
    RoleplayChatEngine,
    check_api_credentials,
    get_credentials,
)
from persona_memory.memory.config import MemoryConfig
from persona_memory.memory.models import MemoryItem
from persona_memory.memory.oracle import OracleError
from persona_memory.memory.persistence import JsonFilePersistence, PersistenceError
from persona_memory.memory.session import Session
from persona_memory.memory.store import MemoryStore
from persona_memory.prompts import build_system_prompt, profile_name, profile_role

SIDECAR_REPLY = (
    "Hello *smiles*\n\n"
    '{"memorize-long-term": {"char": "Has green eyes", "user": "Name is Tom"}, '
    '"memorize-short-term": "greeted Tom", '
    '"clothing": {"char": "red dress", "user": "jeans"}, '
    '"history": "first meeting", '
    '"location": "Cafe Luna", '
    '"date": "2024-05-01"}'
)

CONSOLIDATED = "NAME: Anna\nCORE: kind, brave\n---\nNAME: Tom\nID: 30/m/pilot/Berlin"


def _engine(tmp_path=None, llm=None, summary_llm=None, **config_overrides):
    config = MemoryConfig(**config_overrides)
    session = Session(
        session_id="session_1_abcdefgh",
        store=MemoryStore(config),
        character_profile="NAME: Anna\nID: 25/f/barista/Berlin",
    )
    persistence = JsonFilePersistence(tmp_path) if tmp_path is not None else None
    return RoleplayChatEngine(
        session=session,
        config=config,
        llm=llm or make_llm(SIDECAR_REPLY),
        summary_llm=summary_llm or make_llm(),
        persistence=persistence,
        sleep=AsyncMock(),
    )


def _sent_messages(llm, call=-1):
    return llm.ainvoke.call_args_list[call].args[0]


# ── Turn Tests ──


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_sidecar_updates_memory(self, tmp_path):
        engine = _engine(tmp_path)

        reply = await engine.send_message("Hi!")

        store = engine.store
        assert reply == "Hello *smiles*"
        assert list(store.short_term) == ["greeted Tom"]
        assert list(store.short_term_detailed) == ["Hello *smiles*"]
        assert [(m.topic_group, m.subtopic) for m in store.long_term] == [
            ("CHARACTER_IDENTITY", "appearance"),
            ("USER_IDENTITY", "core"),
        ]
        assert store.long_term[0].content == "[CHARACTER_IDENTITY:appearance] Has green eyes"
        assert store.location == "Cafe Luna"
        assert store.clothing == {"char": "red dress", "user": "jeans"}
        assert [entry.change for entry in store.history] == ["2024-05-01: first meeting"]
        assert engine.session.messages == [
            {"role": "user", "content": "Hi!"},
            {"role": "assistant", "content": "2024-05-01 Hello *smiles*"},
        ]
        # two long-term additions plus the completion call itself
        assert store.metadata.total_api_calls == 3
        assert (tmp_path / "session_1_abcdefgh.json").exists()

    @pytest.mark.asyncio
    async def test_reply_without_sidecar(self):
        engine = _engine(llm=make_llm("Just words."))
        assert await engine.send_message("Hi") == "Just words."
        assert list(engine.store.short_term) == ["Just words."]
        assert engine.store.long_term == ()
        assert engine.session.messages[-1]["content"] == "Just words."

    @pytest.mark.asyncio
    async def test_system_prompt_carries_memory(self):
        llm = make_llm("Hi.")
        engine = _engine(llm=llm)
        await engine.set_deep_memory("Anna and Tom are siblings.")

        await engine.send_message("Hello")

        messages = _sent_messages(llm)
        assert isinstance(messages[0], SystemMessage)
        assert "DEEP MEMORY (CRITICAL INFORMATION)" in messages[0].content
        assert "Anna and Tom are siblings." in messages[0].content
        assert messages[-1].content == "Hello"

    @pytest.mark.asyncio
    async def test_model_failure_leaves_transcript_untouched(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=StatusError(500))
        engine = _engine(llm=llm)

        with pytest.raises(OracleError):
            await engine.send_message("Hi")
        assert engine.session.messages == []
        assert list(engine.store.short_term) == []

    @pytest.mark.asyncio
    async def test_overload_is_retried(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=[StatusError(529), MagicMock(content="Hi.")])
        engine = _engine(llm=llm)
        assert await engine.send_message("Hi") == "Hi."
        assert llm.ainvoke.await_count == 2

    @pytest.mark.asyncio
    async def test_window_is_bounded_and_opens_with_user_turn(self):
        llm = make_llm("Hi.")
        engine = _engine(llm=llm)
        for i in range(7):
            engine.session.add_message("user", f"question {i}")
            engine.session.add_message("assistant", f"answer {i}")

        await engine.send_message("latest")

        window = _sent_messages(llm)[1:]
        assert len(window) <= 10
        assert isinstance(window[0], HumanMessage)
        assert window[-1].content == "latest"

    @pytest.mark.asyncio
    async def test_automatic_compression_after_frequency(self):
        summary_llm = make_llm(CONSOLIDATED)
        engine = _engine(llm=make_llm("Hi."), summary_llm=summary_llm)
        engine.store.replace_long_term(
            MemoryItem(f"[CONVERSATION_THREADS:ongoing] fact {i}") for i in range(8)
        )
        engine.store.metadata.total_api_calls = 9

        await engine.send_message("Hi")

        assert summary_llm.ainvoke.await_count == 1
        assert len(engine.store.long_term) == 2
        assert engine.store.metadata.total_api_calls == 0
        assert engine.session.character_profile == "NAME: Anna\nCORE: kind, brave"

    @pytest.mark.asyncio
    async def test_failed_automatic_compression_keeps_turn(self):
        summary_llm = MagicMock()
        summary_llm.ainvoke = AsyncMock(side_effect=StatusError(500))
        engine = _engine(llm=make_llm("Hi."), summary_llm=summary_llm)
        engine.store.replace_long_term(
            MemoryItem(f"[CONVERSATION_THREADS:ongoing] fact {i}") for i in range(8)
        )
        engine.store.metadata.total_api_calls = 9

        assert await engine.send_message("Hi") == "Hi."
        assert len(engine.store.long_term) == 8


# ── Memory Management Tests ──


class TestMemoryManagement:
    @pytest.mark.asyncio
    async def test_manual_compression(self):
        engine = _engine(summary_llm=make_llm(CONSOLIDATED))
        engine.store.replace_long_term(
            MemoryItem(f"[RELATIONSHIP:dynamics] fact {i}") for i in range(6)
        )
        result = await engine.compress_memory()
        assert result.compressed
        assert result.original_count == 6
        assert engine.get_compression_stats()["compression_count"] == 1

    @pytest.mark.asyncio
    async def test_manual_compression_not_enough_memories(self):
        engine = _engine()
        result = await engine.compress_memory()
        assert result.to_dict() == {"compressed": False, "reason": "Not enough memories"}

    def test_toggle_compression(self):
        engine = _engine()
        assert engine.toggle_compression() is False
        assert engine.toggle_compression() is True
        assert engine.toggle_compression(False) is False
        assert engine.get_compression_stats()["enabled"] is False

    @pytest.mark.asyncio
    async def test_stats(self):
        engine = _engine()
        await engine.send_message("Hi")
        stats = engine.get_compression_stats()
        assert stats["total_api_calls"] == 3
        assert stats["calls_until_next_check"] == 7
        assert stats["long_term_count"] == 2
        assert stats["in_progress"] is False

    @pytest.mark.asyncio
    async def test_clear_short_term_memory(self):
        engine = _engine()
        await engine.set_deep_memory("keep me")
        await engine.send_message("Hi")

        assert await engine.clear_short_term_memory() == {"success": True}
        assert list(engine.store.short_term) == []
        assert engine.session.messages == []
        assert len(engine.store.long_term) == 2
        assert engine.get_deep_memory() == "keep me"

    def test_memory_context_includes_everything_when_configured(self):
        engine = _engine(include_all_memories=True)
        engine.store.append_long_term(MemoryItem("[CHARACTER_IDENTITY:core] barista"))
        assert "IDENTITY (MUST REMEMBER)" in engine.build_memory_context()


# ── Recap Tests ──


class TestRecapHistory:
    def _with_history(self, summary_llm, **overrides):
        engine = _engine(summary_llm=summary_llm, **overrides)
        store = engine.store
        store.date = "2024-05-01"
        store.add_history("first meeting")
        store.date = "2024-05-03"
        store.add_history("first kiss")
        return engine

    @pytest.mark.asyncio
    async def test_recap_only(self):
        engine = self._with_history(make_llm("They met and fell for each other."))
        result = await engine.recap_history()
        assert result.success
        assert result.prose == "They met and fell for each other."
        assert result.metadata["date_range"] == "2024-05-01 to 2024-05-03"
        assert result.metadata["entry_count"] == 2
        assert engine.get_deep_memory() == ""

    @pytest.mark.asyncio
    async def test_transfer_appends_to_deep_memory(self):
        engine = self._with_history(make_llm("New chapter."))
        await engine.set_deep_memory("Old")
        await engine.recap_history(transfer=True)
        assert engine.get_deep_memory() == "Old\n\n---\n\nNew chapter."
        assert len(engine.store.history) == 2

    @pytest.mark.asyncio
    async def test_transfer_replace_and_clear(self):
        engine = self._with_history(make_llm("New chapter."))
        await engine.set_deep_memory("Old")
        await engine.recap_history(transfer=True, mode="replace", clear_history=True)
        assert engine.get_deep_memory() == "New chapter."
        assert engine.store.history == []

    @pytest.mark.asyncio
    async def test_no_history(self):
        engine = _engine()
        result = await engine.recap_history()
        assert result.to_dict() == {"success": False, "reason": "No history entries"}

    @pytest.mark.asyncio
    async def test_oracle_failure(self):
        summary_llm = MagicMock()
        summary_llm.ainvoke = AsyncMock(side_effect=StatusError(400))
        engine = self._with_history(summary_llm)
        result = await engine.recap_history(transfer=True)
        assert result.success is False
        assert "400" in result.error
        assert engine.get_deep_memory() == ""

    @pytest.mark.asyncio
    async def test_invalid_mode(self):
        engine = _engine()
        with pytest.raises(ValueError):
            await engine.recap_history(transfer=True, mode="merge")


# ── Persistence Tests ──


class TestEnginePersistence:
    @pytest.mark.asyncio
    async def test_save_load_list_delete(self, tmp_path):
        engine = _engine(tmp_path)
        await engine.send_message("Hi!")

        other = _engine(tmp_path, llm=make_llm())
        other.session = Session(session_id="someone_else", store=MemoryStore(other.config))
        result = await other.load_state("session_1_abcdefgh")

        assert result == {"success": True, "session_id": "session_1_abcdefgh"}
        assert other.session.messages[-1]["content"] == "2024-05-01 Hello *smiles*"
        assert other.store.location == "Cafe Luna"
        assert other.session.character_profile.startswith("NAME: Anna")

        sessions = await other.list_sessions()
        assert [s["session_id"] for s in sessions] == ["session_1_abcdefgh"]

        assert (await other.delete_session())["success"] is True
        assert await other.list_sessions() == []

    @pytest.mark.asyncio
    async def test_load_unknown_session(self, tmp_path):
        engine = _engine(tmp_path)
        result = await engine.load_state("missing")
        assert result == {"success": False, "reason": "Session not found"}

    @pytest.mark.asyncio
    async def test_save_failure_is_reported(self):
        persistence = MagicMock()
        persistence.save = AsyncMock(side_effect=PersistenceError("disk full"))
        engine = _engine()
        engine.persistence = persistence
        result = await engine.save_state()
        assert result == {"success": False, "error": "disk full"}

    @pytest.mark.asyncio
    async def test_without_persistence(self):
        engine = _engine()
        assert await engine.save_state() == {
            "success": False,
            "reason": "Persistence not configured",
        }
        assert await engine.list_sessions() == []

    def test_snapshot_is_json_serializable(self):
        engine = _engine()
        state = json.loads(json.dumps(engine.get_memory_state()))
        assert state["session_id"] == "session_1_abcdefgh"
        assert "memory_state" in state

    def test_generate_session_id(self):
        assert re.fullmatch(
            r"session_\d+_[a-z0-9]{8}", RoleplayChatEngine.generate_session_id()
        )


# ── Credentials and Prompt Tests ──


class TestCredentials:
    def test_generic_names_win(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "generic")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "anthropic")
        monkeypatch.setenv("API_BASE_URL", "https://proxy.example")
        assert get_credentials() == ("generic", "https://proxy.example")

    def test_falls_back_to_auth_token(self, monkeypatch):
        for name in ("API_KEY", "ANTHROPIC_API_KEY", "API_BASE_URL", "ANTHROPIC_BASE_URL"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("ANTHROPIC_AUTH_TOKEN", "token")
        assert get_credentials() == ("token", None)
        assert check_api_credentials() is True


class TestSystemPrompt:
    def test_profile_name_and_role(self):
        profile = "NAME: Anna\nID: 25/f/barista/Berlin"
        assert profile_name(profile, "Character") == "Anna"
        assert profile_role(profile) == "barista"
        assert profile_name("", "Character") == "Character"
        assert profile_role("ID: 25/f") == ""

    def test_prompt_sections(self):
        session = Session(
            store=MemoryStore(),
            character_profile="NAME: Anna\nID: 25/f/barista/Berlin",
            language="de",
        )
        session.store.date = "2024-05-01"
        session.store.add_history("first meeting")
        prompt = build_system_prompt(session, "Memory:\n• x")

        assert prompt.startswith("You are roleplaying as Anna. You are a barista.")
        assert "Always respond in German" in prompt
        assert "- 2024-05-01: first meeting" in prompt
        assert "## Memory Context\nMemory:\n• x" in prompt
        assert '"memorize-long-term"' in prompt
        assert "{{" not in prompt
