"""
Summarization oracle.

Wraps the chat model calls used by memory maintenance:

- consolidate: fold long-term memories into the character and user profiles
- compress_profile: shrink a profile that grew past its byte budget
- recap_history: turn the relationship timeline into narrative prose

Every failure raises OracleError; callers decide whether to abort or surface it.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from langchain_core.messages import HumanMessage, SystemMessage

from .models import HistoryEntry, MemoryItem
from .oracle import OracleError, invoke_with_retry

LANGUAGE_NAMES = {"en": "English", "de": "German"}

SYMBOL_LEGEND = """- + or ++ = Interest/knowledge (++ = passionate)
- - or -- = Dislike/avoidance (-- = strong dislike)
- ~ = Neutral/ambivalent
- → = Trigger leads to response
- ! = Critical trait/trigger
- * = Hidden trait
- # = Contextual trait
- @ = Location-specific behavior"""

PROFILE_FORMAT = """NAME: [Full name]
ID: [Age/Gender/Occupation/Location]
LOOKS: [Physical appearance details]
CORE: [Fundamental personality traits]
SPEECH: [Communication style and patterns]
TOPICS: [Interests and knowledge areas]
TRIGGERS: [Stimuli and resulting reactions]
CONNECTIONS: [Relationships with other characters]
USERRELATION: [Relationship with the user]
WANTS: [Desires and goals]"""

CONSOLIDATION_SYSTEM_PROMPT = f"""You consolidate roleplay memory into character profiles.
You receive the existing profile of the character, the existing profile of the user
(either may be empty) and new long-term memory entries.

Produce one profile for the character, then a line containing only '---', then one
profile for the user. Each profile follows this exact format:

{PROFILE_FORMAT}

Rules:
1. Preserve all data, especially name and age, unless newer information explicitly contradicts it.
2. Newer information only supersedes directly contradictory older information.
3. Keep USERRELATION current and track how relationships evolve.
4. Be token efficient: merge related attributes, remove duplicates, keep every unique detail.
5. Copy every token written in curly braces, such as {{Anna}} or {{2024-05-01}}, verbatim including the braces.
6. Use these symbols:
{SYMBOL_LEGEND}

Return ONLY the two profiles separated by '---', without explanations."""

COMPRESS_PROFILE_PROMPT = f"""Compress the following character profile to roughly half its length.
Keep the section structure (NAME, ID, LOOKS, CORE, ...) and every section name.
Copy every token written in curly braces verbatim including the braces.
Use these symbols where they save space:
{SYMBOL_LEGEND}

Return ONLY the compressed profile."""

RECAP_SYSTEM_PROMPT = """You write the story so far of a long-running roleplay.
Turn the timeline of relationship milestones into a short narrative recap in {language},
written in past tense from a neutral narrator's perspective. Keep names, dates and
the order of events. The existing deep memory is context: do not repeat it, continue it.
Return ONLY the prose."""

# '---' on its own line separates the character and user profiles
PROFILE_DELIMITER = re.compile(r"^\s*-{3,}\s*$", re.MULTILINE)


@dataclass
class ProfileSegments:
    """Character and user halves of a consolidation reply."""

    character_segment: str
    user_segment: str


def split_profiles(reply: str) -> ProfileSegments:
    """
    Split a consolidation reply on its '---' delimiter.

    Raises:
        OracleError: the reply carries no delimiter.
    """
    parts = PROFILE_DELIMITER.split(reply)
    if len(parts) < 2:
        parts = reply.split("---")
    if len(parts) < 2:
        raise OracleError("Consolidation reply is missing the '---' delimiter")
    if not parts[0].strip() and len(parts) > 2:
        parts = parts[1:]
    return ProfileSegments(parts[0].strip(), parts[1].strip())


class SummarizationOracle:
    """Memory maintenance calls against a chat model."""

    def __init__(
        self,
        llm=None,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self._llm = llm
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    async def _call(self, system_prompt: str, user_content: str) -> str:
        return await invoke_with_retry(
            self._llm,
            [SystemMessage(content=system_prompt), HumanMessage(content=user_content)],
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            sleep=self._sleep,
            logger=self._logger,
        )

    async def consolidate(
        self,
        items: Sequence[MemoryItem],
        character_profile: str,
        user_profile: str,
        character_name: str = "Character",
    ) -> ProfileSegments:
        """Fold ``items`` into both profiles."""
        memory_data = json.dumps([item.content for item in items], ensure_ascii=False)
        content = (
            "## Personas\n"
            f"* 'Character' is the person impersonated by the AI, in this case {character_name}\n"
            "* 'User' is the persona played by the human chat user\n\n"
            "## Previous Character\n"
            f"### {character_name}\n{character_profile or ''}\n"
            f"### User\n{user_profile or ''}\n\n"
            f"## Memory Data\n{memory_data}"
        )
        reply = await self._call(CONSOLIDATION_SYSTEM_PROMPT, content)
        segments = split_profiles(reply)
        self._logger.info(
            "Consolidated %d memories into profiles (%d + %d chars)",
            len(items),
            len(segments.character_segment),
            len(segments.user_segment),
        )
        return segments

    async def compress_profile(self, text: str) -> str:
        compressed = await self._call(COMPRESS_PROFILE_PROMPT, text)
        self._logger.info("Compressed profile: %d -> %d chars", len(text), len(compressed))
        return compressed

    async def recap_history(
        self,
        history: Sequence[HistoryEntry],
        character_name: str = "Character",
        language: str = "en",
        deep_memory: str = "",
    ) -> str:
        """Narrative prose for the relationship timeline."""
        timeline = "\n".join(f"- {entry.change}" for entry in history)
        content = f"## Character\n{character_name}\n\n"
        if deep_memory.strip():
            content += f"## Existing deep memory\n{deep_memory}\n\n"
        content += f"## Timeline\n{timeline}"
        system_prompt = RECAP_SYSTEM_PROMPT.format(
            language=LANGUAGE_NAMES.get(language, LANGUAGE_NAMES["en"])
        )
        return await self._call(system_prompt, content)
