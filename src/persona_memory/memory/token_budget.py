"""
Token estimation for prompt assembly.

Bounds the memory context block and the conversation window sent to the
completion model.
"""

import json

MESSAGE_OVERHEAD = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~3 chars per token for mixed German/English."""
    if not text:
        return 0
    return max(1, len(text) // 3)


def estimate_message_tokens(msg) -> int:
    """Tokens of a chat message plus a fixed overhead for its role."""
    content = getattr(msg, "content", "")
    if isinstance(content, list):
        return MESSAGE_OVERHEAD + sum(_block_tokens(block) for block in content)
    if isinstance(content, str):
        return MESSAGE_OVERHEAD + estimate_tokens(content)
    return MESSAGE_OVERHEAD


def _block_tokens(block) -> int:
    if isinstance(block, str):
        return estimate_tokens(block)
    if isinstance(block, dict) and block.get("type") == "text":
        return estimate_tokens(block.get("text", ""))
    # tool calls and images: count their serialized form
    return estimate_tokens(json.dumps(block, ensure_ascii=False, default=str))


def truncate_text(text: str, max_chars: int) -> str:
    """Shorten ``text`` to ``max_chars`` including a trailing "..."."""
    if not text or len(text) <= max_chars:
        return text or ""
    return text[: max(max_chars - 3, 0)] + "..."


def trim_to_budget(messages: list, max_count: int, max_tokens: int) -> list:
    """
    Keep the most recent messages that fit both limits.

    Walks backwards from the newest message; the newest one is always kept
    so the model sees the current user turn.
    """
    result = []
    total_tokens = 0
    for msg in reversed(messages):
        if len(result) >= max_count:
            break
        msg_tokens = estimate_message_tokens(msg)
        if result and total_tokens + msg_tokens > max_tokens:
            break
        result.insert(0, msg)
        total_tokens += msg_tokens
    return result
