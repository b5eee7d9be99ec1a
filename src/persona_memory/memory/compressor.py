"""
Compression orchestrator.

Folds a session's long-term memory into its character and user profiles:

    Idle ── trigger / manual call ──► Compressing ── success / failure ──► Idle

1. consolidate: one oracle call with every long-term item and both profiles
2. restore: ``{...}`` tokens the oracle dropped are put back
3. second pass: a profile above ``profile_max_bytes`` is compressed again,
   followed by the same restoration
4. swap: long-term memory is replaced by at most two profile entries, the
   api call counter is reset and the compression is recorded

Any oracle failure aborts before step 4, so the session is left untouched.
"""

import logging
from typing import Optional

from .config import MemoryConfig
from .models import CompressionResult, MemoryItem, utcnow
from .oracle import OracleError
from .restoration import restore_immutable_tokens
from .session import Session
from .summarizer import SummarizationOracle

PROFILE_SUBTOPIC = "profile"
CHARACTER_PROFILE_GROUP = "CHARACTER_IDENTITY"
USER_PROFILE_GROUP = "USER_IDENTITY"


def _is_user_item(item: MemoryItem) -> bool:
    tag = item.topic
    return bool(tag and tag.group.startswith("USER"))


class CompressionOrchestrator:
    """Runs memory compression for one session at a time."""

    def __init__(
        self,
        oracle: SummarizationOracle,
        config: Optional[MemoryConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.oracle = oracle
        self.config = config or MemoryConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._compressing = False

    @property
    def is_compressing(self) -> bool:
        return self._compressing

    async def track_api_call(self, session: Session) -> Optional[CompressionResult]:
        """Count one completion call and compress when the trigger fires."""
        session.store.record_api_call()
        if not session.store.should_compress():
            return None
        self._logger.info(
            "Compression triggered for %s (%d calls, %d memories)",
            session.session_id,
            session.store.metadata.total_api_calls,
            len(session.store.long_term),
        )
        return await self.compress(session)

    async def compress(self, session: Session) -> CompressionResult:
        """Compress long-term memory now, regardless of the call counter."""
        if self._compressing:
            return CompressionResult(False, reason="Compression already in progress")

        store = session.store
        if not store.compression_enabled:
            return CompressionResult(False, reason="Compression disabled")

        snapshot = store.snapshot()
        if len(snapshot) <= self.config.compression_threshold:
            return CompressionResult(False, reason="Not enough memories")

        self._compressing = True
        try:
            character_profile, user_profile, restored = await self._rewrite_profiles(
                session, snapshot
            )
        except OracleError as e:
            self._logger.warning(
                "Compression of %s aborted, memory unchanged: %s", session.session_id, e
            )
            return CompressionResult(False, reason="Oracle call failed", error=str(e))
        finally:
            self._compressing = False

        items = [
            MemoryItem(
                content=content,
                timestamp=utcnow(),
                topic_group=group,
                subtopic=PROFILE_SUBTOPIC,
                importance=1.0,
                compressed=True,
                language=session.language,
            )
            for group, content in (
                (CHARACTER_PROFILE_GROUP, character_profile),
                (USER_PROFILE_GROUP, user_profile),
            )
            if content.strip()
        ]
        # Facts appended while the oracle was running survive the swap
        store.replace_long_term(items, since=len(snapshot))
        store.record_compression(len(snapshot), len(store.long_term))
        if character_profile.strip():
            session.character_profile = character_profile
        if user_profile.strip():
            session.user_profile = user_profile

        self._logger.info(
            "Compressed %s: %d -> %d memories",
            session.session_id,
            len(snapshot),
            len(items),
        )
        return CompressionResult(
            True,
            original_count=len(snapshot),
            compressed_count=len(items),
            restored_tokens=restored,
            character_profile=character_profile,
            user_profile=user_profile,
        )

    async def _rewrite_profiles(
        self, session: Session, snapshot: tuple[MemoryItem, ...]
    ) -> tuple[str, str, list[str]]:
        segments = await self.oracle.consolidate(
            snapshot,
            session.character_profile,
            session.user_profile,
            session.character_name,
        )

        character_source = "\n".join(
            [session.character_profile]
            + [item.content for item in snapshot if not _is_user_item(item)]
        )
        user_source = "\n".join(
            [session.user_profile]
            + [item.content for item in snapshot if _is_user_item(item)]
        )
        character_profile, restored = restore_immutable_tokens(
            character_source, segments.character_segment, self._logger
        )
        user_profile, user_restored = restore_immutable_tokens(
            user_source, segments.user_segment, self._logger
        )
        restored.extend(user_restored)

        character_profile = await self._fit_profile(character_profile, restored)
        user_profile = await self._fit_profile(user_profile, restored)
        return character_profile, user_profile, restored

    async def _fit_profile(self, profile: str, restored: list[str]) -> str:
        if len(profile.encode("utf-8")) <= self.config.profile_max_bytes:
            return profile
        self._logger.info(
            "Profile is %d bytes (limit %d), compressing again",
            len(profile.encode("utf-8")),
            self.config.profile_max_bytes,
        )
        compressed = await self.oracle.compress_profile(profile)
        profile, tokens = restore_immutable_tokens(profile, compressed, self._logger)
        restored.extend(tokens)
        return profile
