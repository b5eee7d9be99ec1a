"""
Tests for the oracle calls, token restoration and the compression orchestrator.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import StatusError, make_llm

from persona_memory.memory.compressor import CompressionOrchestrator
from persona_memory.memory.config import MemoryConfig
from persona_memory.memory.models import HistoryEntry, MemoryItem
from persona_memory.memory.oracle import OracleError, invoke_with_retry, response_text
from persona_memory.memory.restoration import (
    dominant_separator,
    find_tokens,
    restore_immutable_tokens,
)
from persona_memory.memory.session import Session
from persona_memory.memory.store import MemoryStore
from persona_memory.memory.summarizer import SummarizationOracle, split_profiles

CONSOLIDATED = "NAME: Anna\nCORE: kind, brave\n---\nNAME: Tom\nID: 30/m/pilot/Berlin"


def _session(config, count=8, **kwargs):
    store = MemoryStore(config)
    store.replace_long_term(
        MemoryItem(f"[CONVERSATION_THREADS:ongoing] fact {i}") for i in range(count)
    )
    return Session(session_id="session-test", store=store, **kwargs)


def _compressor(llm, config, sleep=None):
    oracle = SummarizationOracle(llm, sleep=sleep or AsyncMock())
    return CompressionOrchestrator(oracle, config)


# ── Oracle Tests ──


class TestInvokeWithRetry:
    @pytest.mark.asyncio
    async def test_returns_text(self):
        llm = make_llm("  hello  ")
        assert await invoke_with_retry(llm, []) == "hello"

    @pytest.mark.asyncio
    async def test_no_model(self):
        with pytest.raises(OracleError):
            await invoke_with_retry(None, [])

    @pytest.mark.asyncio
    async def test_retries_only_overloaded(self, no_sleep):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(
            side_effect=[StatusError(529), StatusError(529), MagicMock(content="ok")]
        )
        assert await invoke_with_retry(llm, [], sleep=no_sleep) == "ok"
        assert [c.args[0] for c in no_sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_three_retries(self, no_sleep):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=StatusError(529))
        with pytest.raises(OracleError) as exc_info:
            await invoke_with_retry(llm, [], max_retries=3, sleep=no_sleep)
        assert exc_info.value.status_code == 529
        assert llm.ainvoke.await_count == 4
        assert [c.args[0] for c in no_sleep.await_args_list] == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_other_status_is_terminal(self, no_sleep):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=StatusError(500))
        with pytest.raises(OracleError) as exc_info:
            await invoke_with_retry(llm, [], sleep=no_sleep)
        assert exc_info.value.status_code == 500
        assert llm.ainvoke.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        with pytest.raises(OracleError):
            await invoke_with_retry(make_llm("   "), [])

    def test_response_text_from_blocks(self):
        response = MagicMock(
            content=[{"type": "thinking", "thinking": "hm"}, {"type": "text", "text": "Hi"}]
        )
        assert response_text(response) == "Hi"


# ── Summarizer Tests ──


class TestSummarizationOracle:
    def test_split_profiles(self):
        segments = split_profiles(CONSOLIDATED)
        assert segments.character_segment == "NAME: Anna\nCORE: kind, brave"
        assert segments.user_segment.startswith("NAME: Tom")

    def test_split_profiles_leading_delimiter(self):
        segments = split_profiles("---\nNAME: Anna\n---\nNAME: Tom")
        assert segments.character_segment == "NAME: Anna"
        assert segments.user_segment == "NAME: Tom"

    def test_split_profiles_without_delimiter(self):
        with pytest.raises(OracleError):
            split_profiles("NAME: Anna\nCORE: kind")

    @pytest.mark.asyncio
    async def test_consolidate_sends_items_and_profiles(self):
        llm = make_llm(CONSOLIDATED)
        oracle = SummarizationOracle(llm)
        items = [MemoryItem("[USER_IDENTITY:core] Tom, 30")]
        segments = await oracle.consolidate(items, "NAME: Anna", "NAME: ?", "Anna")

        messages = llm.ainvoke.await_args.args[0]
        assert "---" in messages[0].content
        assert "{Anna}" in messages[0].content
        assert "[USER_IDENTITY:core] Tom, 30" in messages[1].content
        assert "NAME: Anna" in messages[1].content
        assert segments.user_segment.startswith("NAME: Tom")

    @pytest.mark.asyncio
    async def test_recap_history_uses_language_and_deep_memory(self):
        llm = make_llm("Es war einmal...")
        oracle = SummarizationOracle(llm)
        history = [HistoryEntry("2024-05-01: met at the cafe")]
        prose = await oracle.recap_history(history, "Anna", "de", deep_memory="siblings")

        messages = llm.ainvoke.await_args.args[0]
        assert prose == "Es war einmal..."
        assert "German" in messages[0].content
        assert "siblings" in messages[1].content
        assert "- 2024-05-01: met at the cafe" in messages[1].content

    @pytest.mark.asyncio
    async def test_no_model_raises(self):
        with pytest.raises(OracleError):
            await SummarizationOracle(None).compress_profile("NAME: Anna")


# ── Restoration Tests ──


class TestRestoration:
    def test_find_tokens_distinct_in_order(self):
        assert find_tokens("{a} x {b} {a}") == ["{a}", "{b}"]

    def test_dominant_separator(self):
        assert dominant_separator("a; b; c, d") == "; "
        assert dominant_separator("30/f/pilot") == "/"
        assert dominant_separator("a | b") == " | "
        assert dominant_separator("single") == ", "

    def test_nothing_missing(self):
        text, restored = restore_immutable_tokens("CORE: {a}", "CORE: {a}, b")
        assert text == "CORE: {a}, b"
        assert restored == []

    def test_restores_into_original_section(self):
        before = "NAME: Anna\nCORE: kind; {loyal to Tom}\nWANTS: peace"
        after = "NAME: Anna\nCORE: kind; brave\nWANTS: peace"
        text, restored = restore_immutable_tokens(before, after)
        assert "CORE: kind; brave; {loyal to Tom}" in text.splitlines()
        assert restored == ["{loyal to Tom}"]

    def test_falls_back_to_fixed_section_order(self):
        before = "PHRASES: {Na klar!}"
        after = "NAME: Anna\nID: 30/f/pilot/Berlin\nLOOKS: red hair"
        text, _ = restore_immutable_tokens(before, after)
        assert "ID: 30/f/pilot/Berlin/{Na klar!}" in text.splitlines()

    def test_appends_line_without_sections(self):
        text, restored = restore_immutable_tokens("{Anna}", "free text")
        assert text == "free text\n{Anna}"
        assert restored == ["{Anna}"]

    def test_empty_section_gets_token(self):
        text, _ = restore_immutable_tokens("CORE: {brave}", "CORE:\nNAME: x")
        assert text.splitlines()[0] == "CORE: {brave}"


# ── Orchestrator Tests ──


class TestCompressionOrchestrator:
    def setup_method(self):
        self.config = MemoryConfig(compression_frequency=10, compression_threshold=5)

    @pytest.mark.asyncio
    async def test_trigger_compresses_exactly_once(self):
        llm = make_llm(CONSOLIDATED)
        session = _session(self.config)
        compressor = _compressor(llm, self.config)

        results = [await compressor.track_api_call(session) for _ in range(10)]

        assert results[:9] == [None] * 9
        assert results[9].compressed is True
        assert llm.ainvoke.await_count == 1
        metadata = session.store.metadata
        assert metadata.compression_count == 1
        assert metadata.total_api_calls == 0
        assert metadata.memories_before_last_compression == 8
        assert len(session.store.long_term) <= 2

    @pytest.mark.asyncio
    async def test_profile_entries_replace_long_term(self):
        session = _session(self.config)
        result = await _compressor(make_llm(CONSOLIDATED), self.config).compress(session)

        items = session.store.long_term
        assert result.original_count == 8
        assert result.compressed_count == 2
        assert [i.topic_group for i in items] == ["CHARACTER_IDENTITY", "USER_IDENTITY"]
        assert all(i.compressed and i.importance == 1.0 for i in items)
        assert session.character_profile == "NAME: Anna\nCORE: kind, brave"
        assert session.user_profile.startswith("NAME: Tom")

    @pytest.mark.asyncio
    async def test_oracle_failure_leaves_state_untouched(self, no_sleep):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=StatusError(500))
        session = _session(self.config)
        before = session.store.snapshot()

        result = await _compressor(llm, self.config, no_sleep).compress(session)

        assert result.compressed is False
        assert "500" in result.error
        assert session.store.snapshot() == before
        assert session.store.metadata.compression_count == 0
        assert llm.ainvoke.await_count == 1

    @pytest.mark.asyncio
    async def test_malformed_reply_aborts(self):
        session = _session(self.config)
        result = await _compressor(make_llm("NAME: Anna only"), self.config).compress(session)
        assert result.compressed is False
        assert len(session.store.long_term) == 8

    @pytest.mark.asyncio
    async def test_not_enough_memories(self):
        session = _session(self.config, count=5)
        llm = make_llm(CONSOLIDATED)
        result = await _compressor(llm, self.config).compress(session)
        assert result.to_dict() == {"compressed": False, "reason": "Not enough memories"}
        llm.ainvoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled(self):
        session = _session(self.config)
        session.store.compression_enabled = False
        result = await _compressor(make_llm(CONSOLIDATED), self.config).compress(session)
        assert result.reason == "Compression disabled"

    @pytest.mark.asyncio
    async def test_concurrent_call_is_rejected(self):
        release = asyncio.Event()

        async def slow_ainvoke(messages):
            await release.wait()
            return MagicMock(content=CONSOLIDATED)

        llm = MagicMock()
        llm.ainvoke = slow_ainvoke
        session = _session(self.config)
        compressor = _compressor(llm, self.config)

        first = asyncio.create_task(compressor.compress(session))
        await asyncio.sleep(0)
        second = await compressor.compress(session)
        release.set()
        first_result = await first

        assert second.reason == "Compression already in progress"
        assert first_result.compressed is True
        assert compressor.is_compressing is False

    @pytest.mark.asyncio
    async def test_facts_added_during_compression_are_kept(self):
        release = asyncio.Event()

        async def slow_ainvoke(messages):
            await release.wait()
            return MagicMock(content=CONSOLIDATED)

        llm = MagicMock()
        llm.ainvoke = slow_ainvoke
        session = _session(self.config)
        compressor = _compressor(llm, self.config)

        task = asyncio.create_task(compressor.compress(session))
        await asyncio.sleep(0)
        late = MemoryItem("[USER_IDENTITY:core] Name is Bob")
        session.store.append_long_term(late)
        release.set()
        result = await task

        long_term = session.store.long_term
        assert result.compressed is True
        assert result.original_count == 8
        assert len(long_term) == 3
        assert long_term[-1] is late
        assert all(item.compressed for item in long_term[:2])
        assert session.store.metadata.memories_after_last_compression == 3

    @pytest.mark.asyncio
    async def test_immutable_tokens_survive_chained_compressions(self):
        session = _session(self.config, character_profile="NAME: {Anna}\nCORE: kind, {loyal to Tom}")
        llm = make_llm(
            "NAME: {Anna}\nCORE: kind, brave\n---\nNAME: Tom",
            "NAME: Anna\nCORE: brave\n---\nNAME: Tom",
        )
        compressor = _compressor(llm, self.config)

        first = await compressor.compress(session)
        assert "CORE: kind, brave, {loyal to Tom}" in session.character_profile
        assert first.restored_tokens == ["{loyal to Tom}"]

        for i in range(6):
            session.store.append_long_term(MemoryItem(f"[CONVERSATION_THREADS:ongoing] new {i}"))
        second = await compressor.compress(session)

        assert second.compressed is True
        assert "{Anna}" in session.character_profile
        assert "{loyal to Tom}" in session.character_profile
        assert set(second.restored_tokens) == {"{Anna}", "{loyal to Tom}"}

    @pytest.mark.asyncio
    async def test_tokens_from_memory_items_are_restored(self):
        session = _session(self.config)
        session.store.append_long_term(MemoryItem("[USER_IDENTITY:core] calls her {Bunny}"))
        await _compressor(make_llm(CONSOLIDATED), self.config).compress(session)
        assert "{Bunny}" in session.user_profile
        assert "{Bunny}" not in session.character_profile

    @pytest.mark.asyncio
    async def test_oversized_profile_is_compressed_again(self):
        config = MemoryConfig(compression_threshold=5, profile_max_bytes=60)
        long_profile = "NAME: {Anna}\nCORE: " + ", ".join(f"trait {i}" for i in range(20))
        llm = make_llm(long_profile + "\n---\nNAME: Tom", "NAME: Anna\nCORE: many traits")
        session = _session(config)

        result = await _compressor(llm, config).compress(session)

        assert result.compressed is True
        assert llm.ainvoke.await_count == 2
        assert session.character_profile.startswith("NAME: Anna")
        assert "{Anna}" in session.character_profile
        assert "{Anna}" in result.restored_tokens

    @pytest.mark.asyncio
    async def test_second_pass_failure_aborts(self, no_sleep):
        config = MemoryConfig(compression_threshold=5, profile_max_bytes=10)
        llm = MagicMock()
        llm.ainvoke = AsyncMock(
            side_effect=[MagicMock(content=CONSOLIDATED), StatusError(400)]
        )
        session = _session(config)
        result = await _compressor(llm, config, no_sleep).compress(session)
        assert result.compressed is False
        assert len(session.store.long_term) == 8
        assert session.character_profile == ""
