"""
Immutable token restoration.

Profile text may carry literal ``{...}`` tokens (names, dates, quotes) that
must survive consolidation verbatim. The oracle is asked to keep them, but
it sometimes drops one. Any token present before a rewrite and missing after
it is put back:

1. into the section (``CORE:``, ``LOOKS:`` ...) it originally lived in,
2. else into the first section of FALLBACK_SECTIONS present in the rewrite,
3. else on a new line at the end.

Inside a section the token is joined with the separator the section already
uses most (``,`` ``;`` ``|`` or ``/``).
"""

import logging
import re
from typing import Optional


TOKEN_PATTERN = re.compile(r"\{[^{}\n]+\}")
SECTION_PATTERN = re.compile(r"^\s*([A-Z]+):[ \t]*(.*)$")

FALLBACK_SECTIONS = ("CORE", "ID", "LOOKS", "TOPICS", "WANTS")

# separator char → join string
SEPARATORS = {",": ", ", ";": "; ", "|": " | ", "/": "/"}
DEFAULT_SEPARATOR = ", "


def find_tokens(text: str) -> list[str]:
    """Distinct ``{...}`` tokens in order of first appearance."""
    seen: dict[str, None] = {}
    for token in TOKEN_PATTERN.findall(text or ""):
        seen.setdefault(token, None)
    return list(seen)


def dominant_separator(value: str) -> str:
    counts = {sep: value.count(sep) for sep in SEPARATORS}
    best = max(SEPARATORS, key=lambda sep: counts[sep])
    return SEPARATORS[best] if counts[best] else DEFAULT_SEPARATOR


def section_of(text: str, token: str) -> Optional[str]:
    """Name of the section whose body contains ``token``."""
    current = None
    for line in (text or "").splitlines():
        match = SECTION_PATTERN.match(line)
        if match:
            current = match.group(1)
        if token in line:
            return current
    return None


def _section_lines(lines: list[str]) -> dict[str, int]:
    index: dict[str, int] = {}
    for i, line in enumerate(lines):
        match = SECTION_PATTERN.match(line)
        if match:
            index.setdefault(match.group(1), i)
    return index


def restore_immutable_tokens(
    before: str,
    after: str,
    logger: Optional[logging.Logger] = None,
) -> tuple[str, list[str]]:
    """
    Re-insert tokens of ``before`` that are missing from ``after``.

    Returns:
        (restored text, tokens that had to be restored)
    """
    log = logger or logging.getLogger(__name__)
    missing = [token for token in find_tokens(before) if token not in (after or "")]
    if not missing:
        return after, []

    lines = (after or "").splitlines()
    for token in missing:
        sections = _section_lines(lines)
        origin = section_of(before, token)
        candidates = ((origin,) if origin else ()) + FALLBACK_SECTIONS
        target = next((name for name in candidates if name in sections), None)

        if target is None:
            lines.append(token)
            continue

        i = sections[target]
        value = SECTION_PATTERN.match(lines[i]).group(2).rstrip()
        head = lines[i].rstrip()
        lines[i] = head + dominant_separator(value) + token if value else f"{head} {token}"

    log.info("Restored %d immutable token(s): %s", len(missing), ", ".join(missing))
    return "\n".join(lines), missing
