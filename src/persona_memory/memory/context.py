"""
Memory context assembly.

Builds the memory block injected into the system prompt on every turn:

- Deep memory: critical facts, always first and never truncated
- Recent conversation: the last few short-term summaries, shortened
- Memory: long-term items chosen by the RetrievalSelector, grouped by topic

The long-term section is bounded by both ``max_context_memories`` and
``max_context_tokens``.
"""

import logging
from typing import Optional

from .config import MemoryConfig
from .models import MemoryItem
from .retriever import RetrievalSelector
from .store import MemoryStore
from .token_budget import estimate_tokens, truncate_text

DEEP_MEMORY_HEADER = "DEEP MEMORY (CRITICAL INFORMATION):"
RECENT_HEADER = "Recent conversation:"
MEMORY_HEADER = "Memory:"


def _group_heading(item: MemoryItem) -> Optional[str]:
    tag = item.topic
    return tag.group.replace("_", " ") if tag else None


class ContextBuilder:
    """
    Renders a session's memory tiers into prompt text.

    Usage:
        builder = ContextBuilder(config, selector)
        context = builder.build(store)
    """

    def __init__(
        self,
        config: MemoryConfig,
        selector: RetrievalSelector,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.selector = selector
        self._logger = logger or logging.getLogger(__name__)

    def build(self, store: MemoryStore) -> str:
        """Bounded context: deep memory, recent turns, selected long-term memory."""
        parts = []

        if store.deep_memory.strip():
            parts.append(f"{DEEP_MEMORY_HEADER}\n{store.deep_memory}")

        recent = list(store.short_term)[-self.config.recent_context_messages :]
        if recent:
            lines = [
                f"- {truncate_text(content, self.config.context_snippet_chars)}"
                for content in recent
            ]
            parts.append(RECENT_HEADER + "\n" + "\n".join(lines))

        memory_block = self._build_memory_block(store)
        if memory_block:
            parts.append(memory_block)

        return "\n\n".join(parts)

    def _build_memory_block(self, store: MemoryStore) -> str:
        selected = self.selector.select(
            store.snapshot(), self.config.max_context_memories, track=False
        )
        if not selected:
            return ""

        lines = [MEMORY_HEADER]
        used_tokens = estimate_tokens(MEMORY_HEADER)
        current_group = None
        shown: list[MemoryItem] = []
        skipped = 0

        for item in selected:
            line = f"• {truncate_text(item.content, self.config.context_snippet_chars)}"
            group = _group_heading(item)
            heading = f"## {group}:" if group and group != current_group else None
            cost = estimate_tokens(line) + estimate_tokens(heading or "")
            if used_tokens + cost > self.config.max_context_tokens:
                skipped += 1
                continue
            if heading:
                lines.append(heading)
                current_group = group
            lines.append(line)
            shown.append(item)
            used_tokens += cost

        # only memories that made it into the prompt count as accessed
        self.selector.track(shown)

        if skipped:
            self._logger.info(
                "Memory context budget reached, dropped %d of %d memories",
                skipped,
                len(selected),
            )
        return "\n".join(lines) if len(lines) > 1 else ""

    def build_full(self, store: MemoryStore) -> str:
        """
        Unbounded dump of every memory tier, for debugging prompts.

        Identity core facts come first, identity appearance second, then the
        remaining groups in first-seen order. Every item shown is tracked.
        """
        parts = []
        if store.deep_memory.strip():
            parts.append(
                "DEEP MEMORY (CRITICAL INFORMATION - NEVER FORGET):\n"
                f"{store.deep_memory}\n\n"
                "(IMPORTANT: The information above is critical and must always be "
                "respected in your responses)"
            )

        if store.short_term:
            parts.append(
                RECENT_HEADER + "\n" + "\n".join(f"- {c}" for c in store.short_term)
            )

        memories = store.snapshot()
        if memories:
            core, appearance = [], []
            groups: dict[str, list[MemoryItem]] = {}
            for item in memories:
                tag = item.topic
                if tag and tag.is_identity and tag.subtopic == "core":
                    core.append(item)
                elif tag and tag.is_identity and tag.subtopic == "appearance":
                    appearance.append(item)
                else:
                    groups.setdefault(tag.group if tag else "Uncategorized", []).append(
                        item
                    )

            sections = ["Long-term memory:"]
            if core:
                sections.append(self._render_section("IDENTITY (MUST REMEMBER)", core, store))
            if appearance:
                sections.append(
                    self._render_section("APPEARANCE (CRITICAL)", appearance, store)
                )
            for group, items in groups.items():
                sections.append(self._render_section(group, items, store))
            parts.append("\n".join(sections))

        return "\n\n".join(parts)

    @staticmethod
    def _render_section(title: str, items: list[MemoryItem], store: MemoryStore) -> str:
        lines = [f"\n## {title}:"]
        for item in items:
            store.track_access(item)
            lines.append(f"• {item.content}")
        return "\n".join(lines)
