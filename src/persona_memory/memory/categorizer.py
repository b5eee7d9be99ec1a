"""
Long-term fact categorizer.

Assigns a topic tag and an importance score to each new long-term fact.
Rules, in priority order:

1. A fact that already starts with [GROUP] or [GROUP:subtopic] keeps its
   tag verbatim.
2. Otherwise the ordered keyword buckets (appearance, identity, preferences,
   relationship) are tried; the first match prefixes a synthesized tag.
3. No match files the fact under [CONVERSATION_THREADS:ongoing].

Keywords match at the start of a word, so "name" matches "named" but not
"rename".
"""

import logging
import re
from functools import lru_cache
from typing import Optional

from .config import normalize_language
from .keywords import (
    CATEGORY_RULES,
    DEFAULT_SUBTOPIC,
    DEFAULT_TOPIC_GROUP,
    SCORING_KEYWORDS,
    CategoryRule,
    ScoringKeywords,
)
from .models import MemoryItem, TopicTag, clamp_importance


BASE_IMPORTANCE = 0.5
APPEARANCE_IMPORTANCE = 0.9
CORE_IMPORTANCE = 0.8
IMPORTANT_BONUS = 0.2
RELATIONSHIP_BONUS = 0.2
PREFERENCE_BONUS = 0.1
APPEARANCE_BONUS = 0.3

SUBJECTS = {"char": "CHARACTER", "character": "CHARACTER", "user": "USER"}


@lru_cache(maxsize=64)
def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern:
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"(?<!\w)(?:{alternatives})")


def contains_keyword(text: str, keywords: tuple[str, ...]) -> bool:
    """True when any keyword starts a word in ``text`` (case-insensitive)."""
    if not text or not keywords:
        return False
    return _keyword_pattern(keywords).search(text.lower()) is not None


def normalize_subject(subject: str) -> str:
    return SUBJECTS.get((subject or "").strip().lower(), "CHARACTER")


class Categorizer:
    """Files raw facts into topic groups and scores their importance."""

    def __init__(
        self,
        rules: Optional[dict[str, tuple[CategoryRule, ...]]] = None,
        scoring: Optional[dict[str, ScoringKeywords]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.rules = rules or CATEGORY_RULES
        self.scoring = scoring or SCORING_KEYWORDS
        self._logger = logger or logging.getLogger(__name__)

    def categorize(
        self,
        raw_fact: str,
        language: str = "en",
        subject: str = "CHARACTER",
    ) -> MemoryItem:
        """Turn a raw fact into a tagged, scored MemoryItem."""
        language = normalize_language(language)
        fact = (raw_fact or "").strip()

        tag = TopicTag.parse(fact)
        if tag:
            content = fact
        else:
            tag = self.infer_topic(fact, language, subject)
            content = f"{tag} {fact}"

        importance = self.score(content, tag, language)
        item = MemoryItem(
            content=content,
            topic_group=tag.group,
            subtopic=tag.subtopic,
            importance=importance,
            language=language,
        )
        self._logger.debug(
            "Categorized memory (%s): %s importance=%.2f", language, tag, importance
        )
        return item

    def infer_topic(self, fact: str, language: str, subject: str) -> TopicTag:
        """First matching keyword bucket wins; default is an ongoing thread."""
        subject = normalize_subject(subject)
        for rule in self.rules.get(language, self.rules["en"]):
            if contains_keyword(fact, rule.keywords):
                return TopicTag(rule.group.format(subject=subject), rule.subtopic)
        return TopicTag(DEFAULT_TOPIC_GROUP, DEFAULT_SUBTOPIC)

    def score(self, content: str, tag: Optional[TopicTag], language: str) -> float:
        """
        Deterministic additive importance in [0, 1].

        Identity appearance and identity core facts get fixed scores; all
        other facts start at 0.5 and collect keyword bonuses.
        """
        if tag and tag.is_identity and tag.subtopic == "appearance":
            return APPEARANCE_IMPORTANCE
        if tag and tag.is_identity and tag.subtopic == "core":
            return CORE_IMPORTANCE

        kw = self.scoring.get(language, self.scoring["en"])
        score = BASE_IMPORTANCE
        if contains_keyword(content, kw.important):
            score += IMPORTANT_BONUS
        if contains_keyword(content, kw.relationship):
            score += RELATIONSHIP_BONUS
        if contains_keyword(content, kw.preferences):
            score += PREFERENCE_BONUS
        if contains_keyword(content, kw.appearance):
            score += APPEARANCE_BONUS
        return clamp_importance(round(score, 4))
