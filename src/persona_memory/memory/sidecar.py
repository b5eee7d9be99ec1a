"""
Sidecar JSON extraction.

The completion model appends a JSON object to its natural-language reply:

    {
      "memorize-long-term": {"char": "...", "user": "..."},
      "memorize-short-term": "...",
      "clothing": {"char": "...", "user": "..."},
      "history": "...",
      "location": "...",
      "date": "YYYY-MM-DD"
    }

The object is often cut off by the output-length limit, so extraction is
best-effort:

1. Strict parse from the first "{".
2. Otherwise scan for "key": scalar pairs and rebuild a mapping. Known
   top-level keys stay top-level. Every other pair is grouped by position:
   the first two go into "memorize-long-term", the rest into "clothing".

Step 2 is a heuristic, not a parser. A truncated object whose nested pairs
appear in a different order will be mis-grouped (for example a lone
"clothing" pair lands in "memorize-long-term"). Callers must treat the
result as advisory.
"""

import json
import logging
import re
from typing import Any, Optional

LONG_TERM_KEY = "memorize-long-term"
SHORT_TERM_KEY = "memorize-short-term"
CLOTHING_KEY = "clothing"
HISTORY_KEY = "history"
LOCATION_KEY = "location"
DATE_KEY = "date"

TOP_LEVEL_KEYS = frozenset({SHORT_TERM_KEY, HISTORY_KEY, LOCATION_KEY, DATE_KEY})

# Nested pairs before this index belong to memorize-long-term
POSITIONAL_SPLIT = 2

_PAIR_PATTERN = re.compile(r'"([^"]+)":\s*("[^"]*"|-?[0-9.]+|true|false|null)')

# Object opening such as {"key": followed by anything up to the end of the text
_OPEN_TAIL_PATTERN = re.compile(r'\{\s*"[^"\n]+"\s*:[\s\S]*$')

_decoder = json.JSONDecoder()


def extract_sidecar(
    text: Optional[str], logger: Optional[logging.Logger] = None
) -> dict[str, Any]:
    """
    Pull the sidecar object out of a reply.

    Returns {} when there is nothing usable; never raises.
    """
    logger = logger or logging.getLogger(__name__)
    if not text:
        return {}
    start = text.find("{")
    if start == -1:
        return {}

    try:
        parsed, _ = _decoder.raw_decode(text[start:])
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass

    try:
        return _recover_pairs(text[start:], logger)
    except Exception as e:  # recovery must never break the turn
        logger.warning("Sidecar recovery failed: %s", e)
        return {}


def _recover_pairs(fragment: str, logger: logging.Logger) -> dict[str, Any]:
    result: dict[str, Any] = {}
    nested_index = 0

    for match in _PAIR_PATTERN.finditer(fragment):
        key, raw_value = match.group(1), match.group(2)
        try:
            value = json.loads(raw_value)
        except ValueError:
            value = raw_value.strip('"')

        if key in TOP_LEVEL_KEYS:
            result[key] = value
            continue

        group = LONG_TERM_KEY if nested_index < POSITIONAL_SPLIT else CLOTHING_KEY
        result.setdefault(group, {})[key] = value
        nested_index += 1

    if result:
        logger.debug("Recovered partial sidecar with keys: %s", sorted(result))
    return result


def strip_sidecar(text: Optional[str]) -> str:
    """
    Remove a trailing sidecar block so the user never sees it.

    A complete trailing object is found by trying every "{" from the left
    until one parses through to the end of the text. Failing that, the
    first unparseable '{"key": ...' run (a truncated object) is cut.

    Whitespace between the reply and the block is removed together with any
    trailing whitespace of the reply itself, since the two cannot be told
    apart. The visible reply therefore never ends in whitespace, and
    ``strip_sidecar(reply + sep + block) == reply.rstrip()``.
    """
    if not text:
        return ""

    truncated_at = None
    for match in re.finditer(r"\{", text):
        pos = match.start()
        try:
            _, end = _decoder.raw_decode(text, pos)
        except ValueError:
            if truncated_at is None and _OPEN_TAIL_PATTERN.match(text, pos):
                truncated_at = pos
            continue
        if not text[end:].strip():
            return text[:pos].rstrip()

    if truncated_at is not None:
        return text[:truncated_at].rstrip()
    return text
