"""
System prompt for the roleplay completion call.

The prompt carries the profiles, the scene, the relationship timeline and
the memory context, and ends with the sidecar contract: the JSON object the
model appends to every reply so memory can be updated from it.
"""

import re

from .memory.session import Session

LANGUAGE_NAMES = {"en": "English", "de": "German"}

_NAME_PATTERN = re.compile(r"^\s*NAME:[ \t]*(\S[^\n]*)$", re.MULTILINE)
_ID_PATTERN = re.compile(r"^\s*ID:[ \t]*([^\n]*)$", re.MULTILINE)

SYMBOL_NOTE = (
    "Symbolic character profile. SYMBOLS: + interest, ++ passionate, - dislike, "
    "-- strong dislike, ~ neutral, → trigger response, ! critical, * hidden trait, "
    "# contextual, @ location-specific. Embody fully, especially * hidden aspects."
)

RULES = """## Rules
1. Always first person, stay in character
2. !Never write or anticipate the user's actions or speak for them!
3. Use **bold**, *italics*, > quotes
4. No visible JSON in the response text
5. Memory: only NEW facts from the current response, symbolic language, concise; never append to old facts
6. The character's emotional state must reflect the cumulative impact of the timeline
7. Don't show the date in the response"""

SIDECAR_CONTRACT = """## Memory System
Append this JSON after the response:
{{
  "memorize-long-term": {{"char": "NEW {name} facts (symbolic)", "user": "NEW user facts (symbolic)"}},
  "memorize-short-term": "Summary of this turn (symbolic)",
  "clothing": {{"char": "Current clothing, generate if unspecified", "user": "User clothing, generate if unspecified"}},
  "history": "Milestone that advances the relationship or reveals a new side of the character, 6-10 words, symbolic. Leave EMPTY if a similar event is already in the timeline.",
  "location": "Current location of {name} (not the user). Generate if unknown.",
  "date": "Current date in the roleplay, format YYYY-MM-DD. Generate if unknown."
}}"""


def profile_name(profile: str, default: str) -> str:
    match = _NAME_PATTERN.search(profile or "")
    return match.group(1).strip() if match else default


def profile_role(profile: str) -> str:
    """Occupation from an ``ID: age/gender/occupation/location`` line."""
    match = _ID_PATTERN.search(profile or "")
    parts = match.group(1).split("/") if match else []
    return parts[2].strip() if len(parts) >= 3 else ""


def build_system_prompt(session: Session, memory_context: str = "") -> str:
    """Assemble the full system prompt for the next completion call."""
    store = session.store
    name = profile_name(session.character_profile, session.character_name)
    role = profile_role(session.character_profile)
    language = LANGUAGE_NAMES.get(session.language, LANGUAGE_NAMES["en"])

    intro = f"You are roleplaying as {name}."
    if role:
        intro += f" You are a {role}."

    sections = [
        intro,
        f"IMPORTANT: Always respond in {language}.",
        "## Personas\n"
        f"'Character' is the person impersonated by the AI, in this case {name}\n"
        "'User' is the persona played by the human chat user",
        f"## Symbolic Language\n{SYMBOL_NOTE}",
        f"## Character Essence\n---\n{session.character_profile}\n---",
        f"## User Essence\n{session.user_profile}\n---",
    ]

    scene = [f"Location: {store.location}"]
    if store.date:
        scene.append(f"Date: {store.date}")
    for who, outfit in store.clothing.items():
        scene.append(f"Clothing ({who}): {outfit}")
    sections.append("## Current Scene\n" + "\n".join(scene))

    if store.history:
        timeline = "\n".join(f"- {entry.change}" for entry in store.history)
        sections.append(
            "## Narrative Continuity\n"
            "Key moments below define the story arc: drive responses, keep them "
            "consistent and continue the emotional trajectory.\n" + timeline
        )

    if memory_context:
        sections.append(f"## Memory Context\n{memory_context}")

    sections.append(RULES)
    sections.append(SIDECAR_CONTRACT.format(name=name))
    sections.append(
        "Never contradict memory and acknowledge what you remember about the user. "
        f"Let the key history moments shape {name}'s emotional state."
    )
    return "\n\n".join(sections)
